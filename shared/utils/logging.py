"""统一日志入口。"""

import logging

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def setup_logger(name: str = "trading", level: int = logging.INFO) -> logging.Logger:
    """获取带控制台输出的 logger。

    同名 logger 重复调用只会挂一个 handler，避免日志重复打印。
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not any(getattr(h, "_trading_console", False) for h in logger.handlers):
        # 控制台 handler
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(_FORMAT))
        ch._trading_console = True  # type: ignore[attr-defined]
        logger.addHandler(ch)
    return logger
