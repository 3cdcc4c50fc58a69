# commons/base_client.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Mapping, Optional

import requests
from requests import Response, Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from commons.base_logger import BaseLogger


class BaseClient(ABC):
    """
    HTTP 客户端基类：
    - 统一 _request，fetch/fetch_post 是薄封装
    - 不污染 session 的全局 headers（按请求传入）
    - 完整的重试策略（connect/read/status），尊重 Retry-After
    - 请求失败只记日志并返回 None，由调用方决定兜底值
    """

    # 默认可重试方法
    RETRY_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

    # 默认可重试状态码
    RETRY_STATUS = (408, 429, 500, 502, 503, 504)

    def __init__(
        self,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float | tuple[float, float] = (5.0, 15.0),
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        retry_on_post: bool = False,
        logger: Optional[BaseLogger] = None,
    ):
        self.logger = logger or BaseLogger(name=self.__class__.__name__)

        self._base_headers: Dict[str, str] = dict(headers or {})
        self.timeout = timeout
        self.max_retries = int(max_retries)
        self.backoff_factor = float(backoff_factor)
        self.retry_on_post = bool(retry_on_post)

        self.session: Session = self._create_session()

    # --------------------- Session / Retry ---------------------

    def _create_session(self) -> Session:
        """创建带重试机制的 Session。"""
        s = requests.Session()

        allowed_methods = set(self.RETRY_METHODS)
        if self.retry_on_post:
            allowed_methods.add("POST")

        retry = Retry(
            total=self.max_retries,
            connect=self.max_retries,
            read=self.max_retries,
            status=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=self.RETRY_STATUS,
            allowed_methods=frozenset(m.upper() for m in allowed_methods),
            respect_retry_after_header=True,
            raise_on_status=False,  # 不在 adapter 层抛，在 _request 里统一处理
        )

        adapter = HTTPAdapter(max_retries=retry)
        s.mount("http://", adapter)
        s.mount("https://", adapter)
        return s

    # --------------------- 钩子（子类可覆写） ---------------------

    def on_error(self, exc: Exception, url: str, method: str) -> None:
        self.logger.log_error(f"{method} {url} 失败: {exc}", exc_info=False)

    # --------------------- 统一请求入口 ---------------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        data: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        allow_status: Optional[Iterable[int]] = None,
    ) -> Optional[Response]:
        req_headers: Dict[str, str] = dict(self._base_headers)
        if headers:
            req_headers.update(headers)

        self.logger.log_debug(f"REQUEST {method.upper()} {url} | data={'set' if data is not None else 'none'}")

        try:
            resp = self.session.request(
                method=method.upper(),
                url=url,
                data=data,
                headers=req_headers,
                timeout=self.timeout,
            )
            ok = resp.ok or (allow_status and resp.status_code in allow_status)
            if not ok:
                self.logger.log_warning(f"BAD_STATUS {method.upper()} {url} -> {resp.status_code}")
                resp.raise_for_status()
            return resp

        except requests.RequestException as e:
            self.on_error(e, url, method)
            return None

    # --------------------- 对外方法 ---------------------

    def fetch(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        allow_status: Optional[Iterable[int]] = None,
    ) -> Optional[Response]:
        """GET 请求"""
        return self._request("GET", url, headers=headers, allow_status=allow_status)

    def fetch_post(
        self,
        url: str,
        *,
        data: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        allow_status: Optional[Iterable[int]] = None,
    ) -> Optional[Response]:
        """POST 表单请求"""
        return self._request("POST", url, data=data, headers=headers, allow_status=allow_status)

    # --------------------- 资源管理 ---------------------

    def close(self) -> None:
        """显式关闭底层 Session 连接池。"""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # --------------------- 需子类实现 ---------------------

    @abstractmethod
    def parse(self, response: Response) -> Any:
        """解析响应的逻辑，由子类实现"""
        raise NotImplementedError
