"""
数据流分层架构
  Layer 0 – Queue        : 准入队列（按依赖类别限流）
  Layer 1 – Acquisition  : 数据获取（行情数据源）
  Layer 2 – Cache        : 分级缓存（文件 / Redis → MongoDB）
  Layer 3 – Processing   : 数据清洗与格式化
  Layer 4 – Analysis     : 指标与信号计算
"""
