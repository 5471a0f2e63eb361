"""
服务异常定义
HTTP 层通过 status_code 将异常映射为响应状态码
"""

from typing import Optional


class MirrorServiceError(Exception):
    """镜像服务异常基类"""

    status_code: int = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(MirrorServiceError):
    """标识符或参数格式错误"""

    status_code = 400


class NotFoundError(MirrorServiceError):
    """上游明确确认数据不存在"""

    status_code = 404


class ResponseMismatchError(MirrorServiceError):
    """批量响应中缺少请求过的 CUI（既不在 found 也不在 notFound）"""

    status_code = 502


class UpstreamError(MirrorServiceError):
    """上游网络错误或非成功状态码"""

    status_code = 502

    def __init__(self, message: str = "", upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class CoalescerClosedError(MirrorServiceError):
    """请求合并器已停止，不再接受新请求"""

    status_code = 503


class RateLimitExceeded(MirrorServiceError):
    """客户端超过限流配额"""

    status_code = 429

    def __init__(self, decision):
        super().__init__("Rate limit exceeded")
        self.decision = decision


class EnrichmentWarning(MirrorServiceError):
    """补充信息失败，仅记录日志，不向调用方抛出"""
