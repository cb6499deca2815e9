#!/usr/bin/env python3
"""
Open Power Box command-line tool - Main Entry Point

Examples:
  opb-ctl ports
  opb-ctl --port /dev/ttyUSB0 info
  opb-ctl --port /dev/ttyUSB0 set 3 on
  opb-ctl --simulate watch --interval 2 --count 5
"""

import sys
import argparse
import logging
from typing import List, Optional, Union

from .communication.device_simulator import SimulatedTransport
from .communication.errors import PowerBoxError
from .communication.serial_transport import SerialTransport, list_serial_ports
from .controllers.device_controller import PowerBoxController
from .controllers.events import LoggingEventSink
from .controllers.poll_manager import PollManager
from .models.snapshot import StateSnapshot
from .models.topology import ChannelClass, LimitKind, REVERSE_INDEX
from .utils.config import AppConfig, ConfigError, load_config
from .utils.logger import setup_logger

logger = logging.getLogger(__name__)

_ON_WORDS = ("on", "true", "yes")
_OFF_WORDS = ("off", "false", "no")
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="opb-ctl",
        description="Open Power Box - control a power box over USB serial",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s ports                               # List serial ports
  %(prog)s -p /dev/ttyUSB0 info                # Topology, names, limits
  %(prog)s -p /dev/ttyUSB0 set 3 on            # Switch index 3 on
  %(prog)s -p /dev/ttyUSB0 set 7 40            # PWM index 7 at 40%%
  %(prog)s -p /dev/ttyUSB0 limit dc_total 12.5
  %(prog)s --simulate watch -i 2 -n 5          # Poll the built-in simulator
"""
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument("-p", "--port", help="Serial port (overrides the config file)")
    source.add_argument("--simulate", action="store_true", help="Use the built-in device simulator")

    parser.add_argument("-c", "--config", metavar="FILE", help="Configuration file (JSON)")
    parser.add_argument("--log-level", default=None, type=str.upper, choices=LOG_LEVELS,
                        help="Logging level (default: WARNING)")
    parser.add_argument("--log-dir", default=None, help="Directory for log files")
    parser.add_argument("--timeout", type=float, default=None, help="Read timeout per command in seconds")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    sub.add_parser("ports", help="List serial ports")
    sub.add_parser("info", help="Show topology, names, reverse flags and limits")
    sub.add_parser("poll", help="Run one poll sweep and print the snapshot")

    get_p = sub.add_parser("get", help="Read one index")
    get_p.add_argument("index", type=int)

    set_p = sub.add_parser("set", help="Set a switch (on/off) or PWM duty (0-100)")
    set_p.add_argument("index", type=int)
    set_p.add_argument("value")

    name_p = sub.add_parser("name", help="Show or set a channel name")
    name_p.add_argument("index", type=int)
    name_p.add_argument("text", nargs="?")

    limit_p = sub.add_parser("limit", help="Show or set a current limit")
    limit_p.add_argument("kind", choices=[k.name.lower() for k in LimitKind])
    limit_p.add_argument("amps", type=float, nargs="?")

    reverse_p = sub.add_parser("reverse", help="Show or set a class reverse-polarity flag")
    reverse_p.add_argument("channel_class", choices=[c.value for c in REVERSE_INDEX])
    reverse_p.add_argument("state", nargs="?", choices=["on", "off"])

    wifi_p = sub.add_parser("wifi", help="Show Wi-Fi info, or set credentials")
    wifi_p.add_argument("--ssid")
    wifi_p.add_argument("--password")

    sub.add_parser("reboot", help="Restart the device")

    watch_p = sub.add_parser("watch", help="Poll periodically and print snapshots")
    watch_p.add_argument("-i", "--interval", type=float, default=None, help="Seconds between sweeps")
    watch_p.add_argument("-n", "--count", type=int, default=0, help="Stop after N sweeps (0 = forever)")

    return parser.parse_args(argv)


def parse_switch_value(text: str) -> Union[bool, int]:
    """'on'/'off' (and friends) or an integer duty cycle."""
    lowered = text.strip().lower()
    if lowered in _ON_WORDS:
        return True
    if lowered in _OFF_WORDS:
        return False
    try:
        return int(lowered)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected on/off or a number, got {text!r}")


def build_controller(args: argparse.Namespace, config: AppConfig) -> PowerBoxController:
    if args.simulate:
        transport = SimulatedTransport()
        command_delay = 0.0
    else:
        port = args.port or config.serial.port
        if not port:
            raise PowerBoxError("No serial port given (use --port or set serial.port in the config)")
        transport = SerialTransport(
            port,
            baudrate=config.serial.baudrate,
            settle_delay=config.serial.settle_delay,
        )
        command_delay = config.serial.command_delay

    return PowerBoxController(
        transport,
        event_sink=LoggingEventSink(),
        read_timeout=args.timeout if args.timeout is not None else config.serial.read_timeout,
        command_delay=command_delay,
        ack_policy=config.protocol.policy,
        wifi_apply_delay=config.protocol.wifi_apply_delay,
    )


def format_snapshot(snapshot: StateSnapshot, controller: PowerBoxController) -> List[str]:
    def num(value, unit):
        return "-" if value is None else f"{value:.2f} {unit}"

    lines = [
        f"{snapshot.timestamp:%H:%M:%S}  input {num(snapshot.input_voltage, 'V')}  "
        f"total {num(snapshot.total_current, 'A')}  power {num(snapshot.power, 'W')}"
    ]
    topology = controller.topology
    for index, value in snapshot.switches.items():
        name = controller.cached_name(index) or ""
        channel_class = topology.class_of(index)
        if value is None:
            shown = "?"
        elif isinstance(value, bool):
            shown = "on" if value else "off"
        else:
            shown = f"{value}%"
        lines.append(f"  [{index:2}] {channel_class.name:5} {shown:5} {name}")
    for i, reading in enumerate(snapshot.dc):
        lines.append(f"  DC{i + 1}   {num(reading.voltage, 'V')}  {num(reading.current, 'A')}")
    for i, current in enumerate(snapshot.pwm_current):
        lines.append(f"  PWM{i + 1}  {num(current, 'A')}")
    for i, reading in enumerate(snapshot.bank):
        lines.append(f"  Bank{i + 1} {num(reading.voltage, 'V')}  {num(reading.current, 'A')}")
    if snapshot.failed_indices:
        lines.append(f"  failed reads: {snapshot.failed_indices}")
    return lines


def run_command(args: argparse.Namespace, controller: PowerBoxController, config: AppConfig) -> int:
    topology = controller.topology

    if args.command == "info":
        print(f"Topology: {topology}")
        print(f"Physical switches: {topology.total}, logical indices: {topology.logical_switch_count}")
        for index in range(topology.total):
            name = controller.cached_name(index)
            if name is not None:
                print(f"  [{index:2}] {topology.class_of(index).name:5} {name}")
        for channel_class in REVERSE_INDEX:
            flag = controller.cached_class_reverse(channel_class)
            print(f"Reverse {channel_class.name}: {'-' if flag is None else ('on' if flag else 'off')}")
        for kind in LimitKind:
            amps = controller.cached_class_limit(kind)
            print(f"Limit {kind.name.lower()}: {'-' if amps is None else f'{amps:.2f} A'}")

    elif args.command == "poll":
        print("\n".join(format_snapshot(controller.poll_once(), controller)))

    elif args.command == "get":
        print(controller.get_channel(args.index))

    elif args.command == "set":
        value = parse_switch_value(args.value)
        if not controller.set_channel(args.index, value):
            print(f"Index {args.index}: not confirmed")
            return 1
        print(f"Index {args.index}: {controller.cached_channel(args.index)}")

    elif args.command == "name":
        if args.text is not None and not controller.set_name(args.index, args.text):
            print(f"Index {args.index}: name not confirmed")
            return 1
        print(controller.get_name(args.index))

    elif args.command == "limit":
        kind = LimitKind[args.kind.upper()]
        if args.amps is not None and not controller.set_class_limit(kind, args.amps):
            print(f"Limit {args.kind}: not confirmed")
            return 1
        amps = controller.get_class_limit(kind)
        print("-" if amps is None else f"{amps:.2f}")

    elif args.command == "reverse":
        channel_class = ChannelClass(args.channel_class)
        if args.state is not None and not controller.set_class_reverse(channel_class, args.state == "on"):
            print(f"Reverse {args.channel_class}: not confirmed")
            return 1
        flag = controller.get_class_reverse(channel_class)
        print("-" if flag is None else ("on" if flag else "off"))

    elif args.command == "wifi":
        if args.ssid is not None:
            info = controller.set_wifi_credentials(args.ssid, args.password or "")
        else:
            info = controller.get_wifi_info()
        print(f"IP: {info.ip}\nSSID: {info.ssid}")

    elif args.command == "reboot":
        controller.reboot()
        print("Reboot requested")

    elif args.command == "watch":
        interval = args.interval or config.poll.interval_s
        manager = PollManager(controller, interval=interval)
        manager.start()
        seen = 0
        try:
            while args.count == 0 or seen < args.count:
                snapshot = manager.wait_for_sweep(timeout=interval + 60)
                if snapshot is None:
                    print("No sweep completed")
                    return 1
                print("\n".join(format_snapshot(snapshot, controller)))
                seen += 1
        except KeyboardInterrupt:
            pass
        finally:
            manager.stop()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = parse_args(argv)

    setup_logger(args.log_level or logging.WARNING, log_dir=args.log_dir)

    if args.command == "ports":
        for info in list_serial_ports():
            marker = "*" if info.likely_device else " "
            print(f"{marker} {info.port} - {info.description}")
        return 0

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    controller = None
    try:
        controller = build_controller(args, config)
        controller.connect()
        return run_command(args, controller, config)
    except argparse.ArgumentTypeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (PowerBoxError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if controller is not None:
            controller.disconnect()


if __name__ == "__main__":
    sys.exit(main())
