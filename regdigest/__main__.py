import argparse
import logging
import os
import sys

import docker.errors

from regdigest import config, container, registry, transport
from regdigest.errors import RegistryError

logging.basicConfig(stream=sys.stdout, level=logging.WARNING)
logger = logging.getLogger("regdigest")


def digest(args):
    image = container.Container(name=args.image, image_name=args.image)
    print(registry.fetch_digest(image, args.auth))
    return 0


def check(args):
    try:
        target = container.get_container(args.container)
    except docker.errors.NotFound:
        print(f"Container {args.container} not found", file=sys.stderr)
        return 2
    except docker.errors.DockerException as e:
        print(f"Cannot reach the Docker daemon: {e}", file=sys.stderr)
        return 2

    if registry.warn_on_api_consumption(target):
        logger.info(
            f"Checking {target.image_name} queries a rate-limited registry API"
        )

    if registry.compare_digest(target, args.auth):
        print(f"{target.name}: {target.image_name} is up to date")
        return 0
    print(f"{target.name}: a newer version of {target.image_name} is available")
    return 1


def main():
    argparser = argparse.ArgumentParser(
        description="Compare local container images against their registry."
    )
    argparser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug output."
    )
    argparser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output."
    )
    argparser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to a YAML config file (user_agent, tls_skip, " +
        "tls_min_version, timeout, host_aliases, ...)."
    )
    subparsers = argparser.add_subparsers(dest="command", required=True)

    digest_parser = subparsers.add_parser(
        "digest",
        help="Print the registry digest of an image tag."
    )
    digest_parser.add_argument(
        "image",
        help="Image reference, e.g. nginx:latest or ghcr.io/owner/repo:v1."
    )

    check_parser = subparsers.add_parser(
        "check",
        help="Check whether a running container's image is stale."
    )
    check_parser.add_argument(
        "container",
        help="Name or id of the container to check."
    )

    for p in (digest_parser, check_parser):
        p.add_argument(
            "--auth",
            default=os.environ.get("REGISTRY_AUTH", ""),
            help="Stored registry credential (base64 JSON or base64 " +
            "user:pass). Defaults to $REGISTRY_AUTH."
        )

    args = argparser.parse_args()

    if args.verbose:
        logger.setLevel(logging.INFO)
    elif args.debug:
        logger.setLevel(logging.DEBUG)

    try:
        config.set_settings(config.load_settings(args.config))
        transport.reset_default_session()
        if args.command == "digest":
            return digest(args)
        return check(args)
    except RegistryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
