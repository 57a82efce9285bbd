"""
回合審核與計分引擎

主持人核對每一回合的實體合約、修正數值、核准或退回回合，
並根據審核後的資料計分與產生即時排行榜。
"""
