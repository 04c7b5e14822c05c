import argparse
import logging
import sys

from sshsentinel.engine.config_paths import DEFAULT_POLICY, DEFAULT_PROBE_TIMEOUT, DEFAULT_WORKERS, SSH_CONFIG
from sshsentinel.engine.errors import PolicyError
from sshsentinel.engine.loader import load_policy
from sshsentinel.engine.main import EXIT_ERROR, print_policy, run_scanner
from sshsentinel.engine.types import RunSettings


def build_parser():
    parser = argparse.ArgumentParser(description="SSH Sentinel compliance scanner")
    parser.add_argument("command", choices=["scan", "list"], help="Command to run")
    parser.add_argument("--policy", default=str(DEFAULT_POLICY), help="Policy YAML file (default: built-in SSH baseline)")
    parser.add_argument("--config", default=SSH_CONFIG, help=f"sshd configuration file (default: {SSH_CONFIG})")
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS, help="Controls evaluated in parallel")
    parser.add_argument("--timeout", type=float, default=DEFAULT_PROBE_TIMEOUT, help="Seconds before a probe gives up")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "list":
        try:
            print_policy(load_policy(args.policy))
        except PolicyError as e:
            logging.getLogger("sshsentinel").error("%s", e)
            return EXIT_ERROR
        return 0

    settings = RunSettings(config_path=args.config, workers=args.workers, probe_timeout=args.timeout)
    return run_scanner(args.policy, settings)


if __name__ == "__main__":
    sys.exit(main())
