# run_reporter.py
"""
设备端入口：把本地温湿度周期性上报给服务端。

    python run/run_reporter.py --temp 21.5 --humi 40
    python run/run_reporter.py --temp 21.5 --humi 40 --once
"""
import argparse
import signal
import threading

from reporter.weather_reporter import WeatherReporter
from weather_socket.settings import ReporterConfig


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="post local weather readings to the SSE server")
    parser.add_argument("--temp", type=float, required=True, help="local temperature (°C)")
    parser.add_argument("--humi", type=float, required=True, help="local relative humidity (%%)")
    parser.add_argument("--once", action="store_true", help="post a single reading and exit")
    args = parser.parse_args(argv)

    with WeatherReporter(ReporterConfig.load()) as reporter:
        if args.once:
            return 0 if reporter.post_weather(args.temp, args.humi) else 1

        stop = threading.Event()
        signal.signal(signal.SIGINT, lambda *_: stop.set())
        reporter.run_forever(lambda: (args.temp, args.humi), stop)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
