"""Response helpers"""
from enum import IntEnum

from apphost.schemas.common import BaseResponse


class ResponseCode(IntEnum):
    SUCCESS = 200


class Messages:
    OPERATION_SUCCESS = "Operation successful"
    QUERY_SUCCESS = "Query successful"


def success(data=None, message=Messages.OPERATION_SUCCESS, code=ResponseCode.SUCCESS):
    return BaseResponse(
        success=True,
        code=int(code),
        message=message,
        data=data,
    )


def error(message, code, data=None, error_code=None):
    return BaseResponse(
        success=False,
        code=int(code),
        message=message,
        error_code=error_code,
        data=data,
    )
