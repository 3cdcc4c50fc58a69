# reporter/weather_reporter.py
from __future__ import annotations

import threading
from typing import Callable, Optional, Tuple

from requests import Response

from commons.base_client import BaseClient
from commons.base_logger import BaseLogger
from commons.normalizers import clean_outdoor_temp, format_reading
from weather_socket.settings import ReporterConfig

# 读本地传感器：返回 (温度 °C, 相对湿度 %)
SensorReader = Callable[[], Tuple[float, float]]


class WeatherReporter(BaseClient):
    """
    设备端上报：
      1) GET {server}/location 取城市（只取一次并缓存）
      2) GET wttr.in/{location}?0Tm&format=%t 查室外温度，失败记为 "?"
      3) POST {server}/weather 表单：localtemp / localhumi / outtemp
    """

    # wttr.in 对浏览器 UA 返回 HTML 页面，对 curl 返回纯文本
    WTTR_HEADERS = {
        "User-Agent": "curl/8.7.1",
        "Accept": "text/html,text/plain,*/*",
        "Accept-Language": "en-US,en",
    }

    def __init__(self, config: Optional[ReporterConfig] = None, **kwargs):
        self.config = config or ReporterConfig()
        super().__init__(
            timeout=self.config.timeout,
            max_retries=self.config.max_retries,
            logger=kwargs.pop("logger", None) or BaseLogger(name="WeatherReporter"),
            **kwargs,
        )
        self.server_url = self.config.server_url.rstrip("/")
        self.wttr_url = self.config.wttr_url.rstrip("/")
        self._location: Optional[str] = None

    def parse(self, response: Response) -> str:
        return response.text.strip()

    # ------------------ 主体逻辑 ------------------

    def get_location(self) -> Optional[str]:
        if self._location:
            return self._location
        resp = self.fetch(f"{self.server_url}/location")
        if resp is None:
            self.logger.log_warning("获取 location 失败：请求无响应")
            return None
        self._location = self.parse(resp) or None
        return self._location

    def get_outdoor_temp(self, location: Optional[str] = None) -> str:
        location = location or self.get_location()
        if not location:
            return "?"
        # %t 需编码成 %25t，否则会被当成非法转义
        resp = self.fetch(f"{self.wttr_url}/{location}?0Tm&format=%25t", headers=self.WTTR_HEADERS)
        if resp is None:
            return "?"
        return clean_outdoor_temp(self.parse(resp))

    def build_form(self, temp: float, humi: float, outtemp: str) -> dict[str, str]:
        return {
            "localtemp": format_reading(temp),
            "localhumi": format_reading(humi),
            "outtemp": outtemp,
        }

    def post_weather(self, temp: float, humi: float) -> bool:
        """查室外温度并上报一次；返回服务端是否接受"""
        outtemp = self.get_outdoor_temp()
        form = self.build_form(temp, humi, outtemp)
        resp = self.fetch_post(f"{self.server_url}/weather", data=form)
        self.logger.log_info(
            f"location: {self._location}\twttr.in temp: {outtemp}\t"
            f"local temp: {form['localtemp']}°C\tlocal humidity: {form['localhumi']}%"
        )
        return resp is not None

    def run_forever(self, read_sensor: SensorReader, stop: threading.Event) -> int:
        """每 interval_sec 秒读一次传感器并上报，直到 stop 置位；返回成功上报次数"""
        sent = 0
        while not stop.is_set():
            temp, humi = read_sensor()
            if self.post_weather(temp, humi):
                sent += 1
            stop.wait(self.config.interval_sec)
        return sent
