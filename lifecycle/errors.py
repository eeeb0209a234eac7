"""会员生命周期异常定义。

所有异常都继承 MembershipError，并带一个类 HTTP 的 code 属性，
方便上层接口直接映射为响应状态码。
"""


class MembershipError(Exception):
    """会员系统异常基类。

    Attributes:
        message: 面向调用方的错误信息。
        code: 类 HTTP 状态码。
    """

    code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(MembershipError):
    """调用方输入不合法（时长、指纹ID越界、前置条件缺失等），不改变任何状态。"""

    code = 400


class UnauthorizedDeviceError(MembershipError):
    """指纹设备密钥校验失败。"""

    code = 401


class NotFoundError(MembershipError):
    """会员或情侣组不存在。"""

    code = 404


class ConflictError(MembershipError):
    """唯一性冲突（指纹ID、手机号、邮箱重复，对方已绑定等），不会部分写入。"""

    code = 409


class ConsistencyFailure(MembershipError):
    """级联更新影响的记录数少于预期，整个操作已回滚。"""

    code = 500


class ResourceExhaustedError(MembershipError):
    """指纹ID池已满（容量问题，而不是输入问题）。"""

    code = 503
