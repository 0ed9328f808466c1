"""
Layer 4 – 指标与信号层
在处理层输出的标准 DataFrame 上计算 MA、MACD、RSI、BOLL，并检测买入信号
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

SIGNAL_NAMES = ["ma_cross", "macd_cross", "rsi_reversal", "bollinger_rebound"]


def _cross_up(fast: pd.Series, slow: pd.Series) -> pd.Series:
    """fast 自下而上穿越 slow 的位置"""
    return (fast > slow) & (fast.shift(1) <= slow.shift(1))


class AnalysisLayer:
    """指标与信号层"""

    # ── 均线 ──────────────────────────────────────────────

    def add_ma(self, df: pd.DataFrame, periods: List[int] = None) -> pd.DataFrame:
        """添加简单移动平均线"""
        if df.empty:
            return df
        df = df.copy()
        for p in (periods or [5, 25, 75]):
            df[f"MA{p}"] = df["close"].rolling(window=p, min_periods=p).mean().round(4)
        return df

    # ── MACD ──────────────────────────────────────────────

    def add_macd(
        self,
        df: pd.DataFrame,
        fast: int = 12,
        slow: int = 26,
        signal: int = 9,
    ) -> pd.DataFrame:
        """添加 MACD 指标（DIF、DEA、MACD 柱）"""
        if df.empty:
            return df
        df = df.copy()
        ema_fast = df["close"].ewm(span=fast, adjust=False).mean()
        ema_slow = df["close"].ewm(span=slow, adjust=False).mean()
        df["MACD_DIF"] = (ema_fast - ema_slow).round(4)
        df["MACD_DEA"] = df["MACD_DIF"].ewm(span=signal, adjust=False).mean().round(4)
        df["MACD_HIST"] = (2 * (df["MACD_DIF"] - df["MACD_DEA"])).round(4)
        return df

    # ── RSI ───────────────────────────────────────────────

    def add_rsi(self, df: pd.DataFrame, period: int = 14) -> pd.DataFrame:
        """添加 RSI 指标；区间内无下跌时为 100"""
        if df.empty:
            return df
        df = df.copy()
        delta = df["close"].diff()
        gain = delta.clip(lower=0).rolling(window=period, min_periods=1).mean()
        loss = (-delta.clip(upper=0)).rolling(window=period, min_periods=1).mean()
        rsi = 100 - 100 / (1 + gain / loss)
        df[f"RSI{period}"] = rsi.where(loss != 0, 100.0).where(delta.notna()).round(4)
        return df

    # ── 布林带 ────────────────────────────────────────────

    def add_bollinger(
        self, df: pd.DataFrame, period: int = 20, std_dev: float = 2.0
    ) -> pd.DataFrame:
        """添加布林带（BOLL_UPPER / BOLL_MID / BOLL_LOWER）"""
        if df.empty:
            return df
        df = df.copy()
        mid = df["close"].rolling(window=period, min_periods=period).mean()
        std = df["close"].rolling(window=period, min_periods=period).std()
        df["BOLL_MID"] = mid.round(4)
        df["BOLL_UPPER"] = (mid + std_dev * std).round(4)
        df["BOLL_LOWER"] = (mid - std_dev * std).round(4)
        return df

    def compute_all(self, df: pd.DataFrame) -> pd.DataFrame:
        df = self.add_ma(df)
        df = self.add_macd(df)
        df = self.add_rsi(df)
        df = self.add_bollinger(df)
        return df

    # ── 信号检测 ──────────────────────────────────────────

    def signal_frame(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        逐行标记买入信号，需先调用 compute_all

        - ma_cross          : MA5 上穿 MA25
        - macd_cross        : DIF 上穿 DEA
        - rsi_reversal      : RSI14 自 30 以下回升至 30 以上
        - bollinger_rebound : 收盘价自下轨之下回到下轨之上
        """
        if df.empty:
            return pd.DataFrame(columns=["date"] + SIGNAL_NAMES)
        out = pd.DataFrame({"date": df["date"], "close": df["close"]})
        out["ma_cross"] = _cross_up(df["MA5"], df["MA25"])
        out["macd_cross"] = _cross_up(df["MACD_DIF"], df["MACD_DEA"])
        out["rsi_reversal"] = (df["RSI14"] >= 30) & (df["RSI14"].shift(1) < 30)
        out["bollinger_rebound"] = _cross_up(df["close"], df["BOLL_LOWER"])
        return out

    def detect_signals(self, df: pd.DataFrame, lookback_days: int = 90) -> Dict[str, Any]:
        """
        返回最新一根 K 线的信号标记及回看窗口内的历史买点

        Returns:
            {
                "flags": {"ma_cross": bool, ...},
                "recent": [{"strategy": "...", "date": "...", "price": ...}, ...]
            }
        """
        frame = self.signal_frame(df)
        if frame.empty:
            return {"flags": {name: False for name in SIGNAL_NAMES}, "recent": []}

        last = frame.iloc[-1]
        flags = {name: bool(last[name]) for name in SIGNAL_NAMES}

        cutoff = pd.to_datetime(last["date"]) - pd.Timedelta(days=lookback_days)
        window = frame[pd.to_datetime(frame["date"]) >= cutoff]
        recent = []
        for _, row in window.iloc[::-1].iterrows():
            for name in SIGNAL_NAMES:
                if row[name]:
                    recent.append({
                        "strategy": name,
                        "date": row["date"],
                        "price": round(float(row["close"]), 2),
                    })
        return {"flags": flags, "recent": recent}

    def to_indicator_summary(self, df: pd.DataFrame) -> Dict[str, Any]:
        """返回最新一行的指标摘要字典"""
        if df.empty:
            return {}
        last = df.iloc[-1]
        return {k: (None if pd.isna(v) else v) for k, v in last.items()}


# ── 模块级别单例 ──────────────────────────────────────────
_analysis: Optional[AnalysisLayer] = None


def get_analysis_layer() -> AnalysisLayer:
    global _analysis
    if _analysis is None:
        _analysis = AnalysisLayer()
    return _analysis
