import argparse
import sys

from appliance_installer.__version__ import __version__
from appliance_installer.config import settings
from appliance_installer.logging import LoggerFactory, setup_logging
from appliance_installer.services import install as install_service
from appliance_installer.storage.devices import format_disk_table, list_usable_disks
from appliance_installer.storage.exceptions import StorageError


log = LoggerFactory.for_system()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="appliance-installer",
        description="Provision a disk into a bootable appliance",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every copied chunk")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("disks", help="List disks usable for installation")

    install_parser = subparsers.add_parser("install", help="Install the system onto a disk")
    install_parser.add_argument(
        "-i",
        "--system-image",
        default=settings.get_setting("system_image", settings.DEFAULT_SYSTEM_IMAGE),
    )
    install_parser.add_argument("--text-mode", action="store_true", help="Boot into text mode")
    install_parser.add_argument(
        "--installer", action="store_true", help="Boot into the installer target"
    )
    install_parser.add_argument("disk", nargs="?")

    media_parser = subparsers.add_parser(
        "create-install-media", help="Write installer media to a removable disk"
    )
    media_parser.add_argument("-i", "--system-image", required=True)
    media_parser.add_argument("disk")

    return parser


def show_usable_disks(min_size=None):
    if min_size is None:
        min_size = settings.get_int("min_disk_size", settings.DEFAULT_MIN_DISK_SIZE)
    disks = list_usable_disks(min_size)
    if not disks:
        print("Sorry, no usable disks found.", file=sys.stderr)
        return 1
    for line in format_disk_table(disks):
        print(line)
    return 0


def _print_message(message):
    print(message, flush=True)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace)

    try:
        if args.command == "disks":
            return show_usable_disks()
        if args.command == "install":
            if not args.disk:
                print("Usage: appliance-installer install [-i IMAGE] [--text-mode] [--installer] DISK")
                print()
                print("Usable disks below:")
                return show_usable_disks()
            boot_vars = install_service.boot_variables(
                text_mode=args.text_mode, installer=args.installer
            )
            install_service.install(
                args.disk,
                args.system_image,
                boot_vars=boot_vars,
                on_message=_print_message,
            )
            return 0
        if args.command == "create-install-media":
            install_service.create_install_media(
                args.disk, args.system_image, on_message=_print_message
            )
            return 0
    except StorageError as error:
        log.error(f"{args.command} failed: {error}")
        print(f"Error: {error}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
