"""
数据流分层架构
  Layer 1 – Acquisition : ANAF 接口调用
  Layer 2 – Coalescer   : 并发查询合并 + 固定间隔分发
  Layer 3 – Cache       : 镜像缓存（新鲜度判断 + 回源写入）
  Layer 4 – Backfill    : 年度资产负债表回填
  辅助模块：store（镜像存储）、processing（格式转换）、ratelimit（客户端限流）、scheduling（时钟）
"""
