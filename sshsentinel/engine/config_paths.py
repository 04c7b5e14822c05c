from pathlib import Path

SSH_CONFIG = "/etc/ssh/sshd_config"

RULES_DIR = Path(__file__).resolve().parent.parent / "rules"
DEFAULT_POLICY = RULES_DIR / "ssh-baseline.yml"

DEFAULT_WORKERS = 4
DEFAULT_PROBE_TIMEOUT = 10.0
