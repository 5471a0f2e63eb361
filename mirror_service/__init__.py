"""
企业数据镜像服务
在限流严格的 ANAF 公共接口前提供本地镜像，对外暴露 HTTP 接口

架构分层：
  数据获取层 (Acquisition)  → 调用 ANAF 基础信息 / 资产负债表接口
  合并层     (Coalescer)    → 将并发的单个查询合并为批量请求，并按固定间隔发送
  缓存层     (Cache)        → 按新鲜度决定命中本地镜像还是回源刷新
  回填层     (Backfill)     → 按年份补齐缺失的财务报表
  限流层     (RateLimit)    → 按客户端固定窗口计数
"""

__version__ = "1.0.0"
