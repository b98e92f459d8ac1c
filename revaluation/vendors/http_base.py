import logging
import random
import time
from typing import Any, Dict, Optional

import requests

from config.settings import get_settings
from revaluation.vendors.base import BaseFetcher


class HttpFetcherBase(BaseFetcher):
    """Base class for fetchers that talk to a JSON HTTP API.

    Adds a shared ``requests`` session, a politeness delay between requests
    and consistent error logging on top of BaseFetcher.
    """

    def __init__(self, name: str, url: str, user_agent: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        """Initialize the HTTP fetcher.

        Args:
            name: Unique identifier for this price source
            url: Base URL of the vendor API
            user_agent: Optional custom user agent string
            session: Optional pre-built session (tests inject a mock here)
        """
        super().__init__(name, url)
        settings = get_settings()
        self.timeout = settings.VENDOR_TIMEOUT
        self.min_delay = settings.VENDOR_MIN_DELAY
        self.max_delay = settings.VENDOR_MAX_DELAY
        self.user_agent = user_agent or settings.VENDOR_USER_AGENT
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": self.user_agent,
            "Accept": "application/json",
        })
        self.logger = logging.getLogger(f"fetcher.{name}")

    def _pause(self):
        if self.max_delay > 0:
            time.sleep(random.uniform(self.min_delay, self.max_delay))

    def _json_object(self, response: requests.Response, url: str) -> Dict[str, Any]:
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object from {url}, got {type(data).__name__}")
        return data

    def get_json(self, url: Optional[str] = None, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a JSON document.

        Raises:
            requests.RequestException: if the request fails or returns 4XX/5XX
            ValueError: if the body is not a JSON object
        """
        target_url = url or self.url
        self.logger.debug("Fetching %s params=%s", target_url, params)
        self._pause()

        try:
            response = self.session.get(target_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return self._json_object(response, target_url)
        except requests.exceptions.RequestException as e:
            self.logger.error("Error fetching %s: %s", target_url, str(e))
            raise

    def post_json(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON body and decode the JSON object it returns."""
        self.logger.debug("Posting to %s", url)
        self._pause()

        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
            return self._json_object(response, url)
        except requests.exceptions.RequestException as e:
            self.logger.error("Error posting to %s: %s", url, str(e))
            raise
