from lihil import HTTPException


class AddressUnavailable(HTTPException[str]):
    "该服务当前没有可用地址"

    __status__ = 404


class InternalError(HTTPException[str]):
    "服务内部错误"

    __status__ = 500
