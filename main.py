from utils.config import DEFAULT_CONFIG_PATH, build_config, load_config
from core.errors import ConfigError
from core.records import BAD_RECORD_POLICIES
import argparse
import logging
import sys
from core.dserver import run_server_sync


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="DNS proxy serving plain DNS from a JSON DNS-over-HTTPS endpoint")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="INI configuration file")
    parser.add_argument("--address", help="Address to listen to (TCP and UDP), default :53")
    parser.add_argument("--default", dest="endpoint", help="DNS-over-HTTPS service endpoint")
    parser.add_argument("--subnet", help="edns_client_subnet argument to pass")
    parser.add_argument("--timeout", type=float, help="Upstream HTTP timeout in seconds")
    parser.add_argument("--on-bad-record", choices=BAD_RECORD_POLICIES,
                        help="Drop unparseable upstream records, or fail the whole query")
    parser.add_argument("--debug", action="store_true", help="Verbose debugging, logs every upstream URL")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        settings = load_config(args.config)
        for key in ("address", "endpoint", "subnet", "timeout", "on_bad_record"):
            value = getattr(args, key)
            if value is not None:
                settings[key] = value
        settings["debug"] = args.debug or settings.get("debug", False)
        settings["verbose"] = args.verbose or settings.get("verbose", False)
        config = build_config(settings)
    except ConfigError as e:
        logging.basicConfig(format='[%(levelname)s] %(message)s')
        logging.critical(f"Invalid configuration: {e}")
        return 1

    logging.basicConfig(level=logging.DEBUG if (config.verbose or config.debug) else logging.INFO,
                        format='[%(levelname)s] %(message)s')
    logging.info("Configuration loaded successfully:")
    for key, value in vars(config).items():
        logging.info(f"{key}: {value}")

    try:
        run_server_sync(config)
    except PermissionError:
        logging.critical(f"Permission denied binding {config.listen_ip}:{config.listen_port}; port 53 needs root")
        return 1
    except OSError as e:
        logging.critical(f"Cannot start listeners: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
