import logging, json, sys, time, os, re

# <prefix>_<22 base62 id>_<43 base62 secret>
_FULL_KEY_RE = re.compile(r"\b([a-z0-9]{2,16})_([0-9A-Za-z]{22})_[0-9A-Za-z]{43}\b")


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line; UTC timestamps."""
    converter = time.gmtime

    def format(self, record):
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class SecretRedactingFilter(logging.Filter):
    """Rewrites any full API key that slips into a log message to ``prefix_id_****``."""

    def filter(self, record):
        msg = record.getMessage()
        scrubbed = _FULL_KEY_RE.sub(r"\1_\2_****", msg)
        if scrubbed != msg:
            record.msg, record.args = scrubbed, None
        return True


def get_logger(name="apikey", level=None, to_file=None):
    """Unified structured logger for all apikey_core components."""
    logger = logging.getLogger(name)
    logger.setLevel(level or os.getenv("APIKEY_LOG_LEVEL", "INFO").upper())

    if not logger.handlers:
        formatter = JsonLineFormatter()
        redactor = SecretRedactingFilter()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
        logger.addHandler(handler)
        # Also scrub before propagation to handlers installed by the host app
        logger.addFilter(redactor)

        if to_file:
            os.makedirs(os.path.dirname(to_file) or ".", exist_ok=True)
            file_handler = logging.FileHandler(to_file)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(redactor)
            logger.addHandler(file_handler)

    return logger


def redact_key(full_key) -> str:
    """Render a presented key as ``prefix_id_****`` so logs never carry the secret."""
    if not isinstance(full_key, str):
        return "<non-string>"
    parts = full_key.split("_")
    if len(parts) != 3:
        return f"<malformed len={len(full_key)}>"
    prefix, key_id, _ = parts
    return f"{prefix[:16]}_{key_id[:32]}_****"
