"""
行情信号刷新服务
在外部 API 限流约束下，为自选股票池批量刷新衍生信号，并实时推送扫描进度

架构分层：
  准入队列层 (Queue)        → 按外部依赖类别限制并发请求数
  数据获取层 (Acquisition)  → 从行情数据源拉取原始 K 线
  缓存层     (Cache)        → 本地快速层（文件 / Redis）+ MongoDB 慢速层
  处理 / 分析层             → 数据清洗与信号计算
  扫描服务   (Scan)         → 多协程并行扫描、进度流、单实例保护
"""

__version__ = "1.0.0"
