# _logging.py
# A simple structured logger with colored console output and optional JSON file output.
from __future__ import annotations
import sys, datetime, json, os, threading, time
from typing import Any, Optional, TextIO, Mapping, Dict

RESET = "\033[0m"
DIM = "\033[90m"
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[33m"
BLUE = "\033[94m"

LEVELS = {"silent": 60, "error": 40, "warn": 30, "info": 20, "debug": 10}

# ── runtime debug gate (env first, then config.json, cached briefly) ─────
_CFG_CACHE: Dict[str, Any] | None = None
_CFG_TS: float = 0.0

def _debug_enabled() -> bool:
    global _CFG_CACHE, _CFG_TS
    if (os.getenv("CP_DEBUG") or "").strip().lower() in ("1", "true", "yes", "on"):
        return True
    now = time.time()
    if _CFG_CACHE is None or (now - _CFG_TS) > 5.0:
        try:
            from cp_platform.config_base import config_path
            with open(config_path(), "r", encoding="utf-8") as f:
                _CFG_CACHE = json.load(f)
        except (OSError, ValueError):
            _CFG_CACHE = {}
        _CFG_TS = now
    rt = (_CFG_CACHE or {}).get("runtime") or {}
    return bool(rt.get("debug"))

class Logger:
    def __init__(
        self,
        stream: TextIO | None = None,
        level: str = "info",
        use_color: bool | None = None,
        show_time: bool = True,
        time_fmt: str = "%Y-%m-%d %H:%M:%S",
        *,
        _context: Optional[Dict[str, Any]] = None,
        _json_stream: Optional[TextIO] = None,
        _lock: Optional[threading.Lock] = None,
    ):
        self._stream = stream
        self.level_no = LEVELS.get(level, 20)
        self.use_color = (os.getenv("NO_COLOR") is None) if use_color is None else use_color
        self.show_time = show_time
        self.time_fmt = time_fmt
        self.tag_color_map = {
            "DEBUG": YELLOW,
            "INFO": BLUE,
            "WARN": YELLOW,
            "ERROR": RED,
            "SUCCESS": GREEN,
        }
        self._context: Dict[str, Any] = dict(_context or {})
        self._json_stream: Optional[TextIO] = _json_stream
        self._lock = _lock or threading.Lock()

    @property
    def stream(self) -> TextIO:
        # resolved lazily so test capture of sys.stdout keeps working
        return self._stream or sys.stdout

    # Configuration
    def set_level(self, level: str) -> None:
        self.level_no = LEVELS.get(level, self.level_no)

    def enable_json(self, file_path: str) -> None:
        self._json_stream = open(file_path, "a", encoding="utf-8")

    # Context
    def bind(self, **ctx: Any) -> "Logger":
        new_ctx = dict(self._context); new_ctx.update(ctx)
        child = Logger(
            stream=self._stream,
            level=self.level_name,
            use_color=self.use_color,
            show_time=self.show_time,
            time_fmt=self.time_fmt,
            _context=new_ctx,
            _json_stream=self._json_stream,
            _lock=self._lock,
        )
        return child

    def child(self, name: str) -> "Logger":
        return self.bind(module=name)

    @property
    def level_name(self) -> str:
        for k, v in LEVELS.items():
            if v == self.level_no:
                return k
        return "info"

    # Formatting
    def _fmt_text(self, lvl: str, msg: str) -> str:
        mod = str(self._context.get("module") or "").strip()
        col = self.tag_color_map.get(lvl) if self.use_color else None
        lvl_disp = f"{col}{lvl}{RESET}" if col else lvl
        head = f"[{mod}]" if mod else ""
        line = f"{head} {lvl_disp} {msg}".strip()
        if self.show_time:
            ts = datetime.datetime.now().strftime(self.time_fmt)
            prefix = f"{DIM}[{ts}]{RESET}" if self.use_color else f"[{ts}]"
            return f"{prefix} {line}"
        return line

    def _emit(self, severity: str, label: str, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        if severity == "debug":
            if not _debug_enabled():
                return
        elif self.level_no > LEVELS.get(severity, 20):
            return
        msg = " ".join(str(p) for p in parts)
        text = self._fmt_text(label, msg)
        with self._lock:
            self.stream.write(text + "\n")
            self.stream.flush()
            if self._json_stream:
                payload: Dict[str, Any] = {
                    "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds"),
                    "level": label,
                    "msg": msg,
                    "ctx": self._context,
                }
                if extra:
                    payload["extra"] = dict(extra)
                self._json_stream.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
                self._json_stream.flush()

    # Public API
    def debug(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("debug", "DEBUG", *parts, extra=extra)

    def info(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", "INFO", *parts, extra=extra)

    def warn(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("warn", "WARN", *parts, extra=extra)

    def error(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("error", "ERROR", *parts, extra=extra)

    def success(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", "SUCCESS", *parts, extra=extra)

    # Callable adapter: logger("text", level="INFO")
    def __call__(self, message: str, *, level: str = "INFO", extra: Optional[Mapping[str, Any]] = None) -> None:
        fn = {
            "debug": self.debug,
            "warn": self.warn,
            "warning": self.warn,
            "error": self.error,
            "success": self.success,
        }.get((level or "info").lower(), self.info)
        fn(message, extra=extra)

# default instance
log = Logger()

__all__ = ["Logger", "log", "LEVELS", "RESET", "DIM", "RED", "GREEN", "YELLOW", "BLUE"]
