"""
Data Acquisition Module for the Judicial Identity Engine.

Fetches raw judge, position, court and docket records from the CourtListener
REST API, or loads previously exported records from JSON, JSONL and CSV
files. Records are returned as plain dictionaries; turning them into typed
records is the preprocessor's job.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, List, Any

import pandas as pd
import requests
from tqdm import tqdm

logger = logging.getLogger(__name__)


class CourtListenerClient:
    """
    Client for the CourtListener REST API (free.law).

    Every request is rate limited. Responses with status 429 or 5xx and
    connection errors are retried with exponential backoff; other HTTP
    errors are raised immediately.

    API docs: https://www.courtlistener.com/api/rest-info/
    """

    BASE_URL = "https://www.courtlistener.com/api/rest/v4"

    RETRY_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        api_token: Optional[str] = None,
        data_dir: str = "data/raw",
        rate_limit_delay: float = 1.0,
        max_retries: int = 4,
        backoff_base: float = 1.0,
    ):
        """
        Initialize the CourtListener API client.

        Args:
            api_token: CourtListener API token. If None, uses unauthenticated
                access (lower rate limits).
            data_dir: Directory to store downloaded data files.
            rate_limit_delay: Seconds to wait between API requests.
            max_retries: Retries for throttled or failed requests.
            backoff_base: First backoff in seconds (doubles per retry).
        """
        self.api_token = api_token
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.rate_limit_delay = rate_limit_delay
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._session = requests.Session()
        if api_token:
            self._session.headers["Authorization"] = f"Token {api_token}"

    @classmethod
    def from_config(cls, config, api_token: Optional[str] = None,
                    data_dir: str = "data/raw") -> "CourtListenerClient":
        return cls(
            api_token=api_token,
            data_dir=data_dir,
            rate_limit_delay=config.rate_limit_delay,
            max_retries=config.api_max_retries,
            backoff_base=config.api_backoff_base,
        )

    def _get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: int = 30,
    ) -> Dict[str, Any]:
        """
        Make a rate-limited GET request, retrying transient failures.

        Args:
            endpoint: API endpoint path (e.g., "/people/") or absolute URL.
            params: Query parameters.
            timeout: Request timeout in seconds.

        Returns:
            JSON response as dictionary.

        Raises:
            requests.RequestException: On non-retryable HTTP errors, or when
                retries are exhausted.
        """
        url = endpoint if endpoint.startswith("http") else f"{self.BASE_URL}{endpoint}"
        retry = 0

        while True:
            time.sleep(self.rate_limit_delay)
            try:
                response = self._session.get(url, params=params, timeout=timeout)
            except (requests.ConnectionError, requests.Timeout) as e:
                if retry >= self.max_retries:
                    raise
                retry += 1
                self._backoff(retry, f"connection error: {e}")
                continue

            if response.status_code in self.RETRY_STATUS and retry < self.max_retries:
                retry += 1
                self._backoff(retry, f"HTTP {response.status_code}", response.headers.get("Retry-After"))
                continue

            response.raise_for_status()
            return response.json()

    def _backoff(self, retry: int, reason: str, retry_after: Optional[str] = None) -> None:
        delay = self.backoff_base * (2 ** (retry - 1))
        if retry_after and retry_after.isdigit():
            delay = max(delay, float(retry_after))
        logger.warning(
            "Request failed (%s), retry %d/%d in %.1fs", reason, retry, self.max_retries, delay
        )
        time.sleep(delay)

    def _get_paginated(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        max_results: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch all pages of a paginated API response.

        Args:
            endpoint: API endpoint path.
            params: Query parameters.
            max_results: Maximum number of results to return.

        Returns:
            List of result dictionaries.
        """
        results: List[Dict[str, Any]] = []
        params = params or {}

        page_url: Optional[str] = endpoint
        while page_url:
            data = self._get(page_url, params=params)
            results.extend(data.get("results", []))

            if max_results and len(results) >= max_results:
                results = results[:max_results]
                break

            page_url = data.get("next")
            params = {}  # params already encoded in next URL

        logger.info("Fetched %d results from %s", len(results), endpoint)
        return results

    # ==================== Judge Data ====================

    def search_judges(
        self,
        name: Optional[str] = None,
        court: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Search for judges in the CourtListener database.

        Args:
            name: Surname prefix.
            court: Court identifier (e.g., "cacd").
            max_results: Maximum number of results.

        Returns:
            List of judge (person) records.
        """
        params: Dict[str, Any] = {}
        if name:
            params["name_last__startswith"] = name
        if court:
            params["positions__court"] = court
        return self._get_paginated("/people/", params=params, max_results=max_results)

    def get_judge_detail(self, judge_id: int) -> Dict[str, Any]:
        """Get detailed information about a specific judge."""
        return self._get(f"/people/{judge_id}/")

    def get_judge_positions(self, judge_id: int) -> List[Dict[str, Any]]:
        """
        Get judicial positions held by a judge.

        Args:
            judge_id: CourtListener person ID.

        Returns:
            List of position records.
        """
        return self._get_paginated("/positions/", params={"person": judge_id})

    # ==================== Case Data ====================

    def search_dockets(
        self,
        court: Optional[str] = None,
        judge: Optional[str] = None,
        date_filed_after: Optional[str] = None,
        date_filed_before: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Search for court dockets.

        Args:
            court: Court identifier.
            judge: Assigned judge surname prefix.
            date_filed_after: Filter dockets filed after this date (YYYY-MM-DD).
            date_filed_before: Filter dockets filed before this date.
            max_results: Maximum number of results.

        Returns:
            List of docket records.
        """
        params: Dict[str, Any] = {}
        if court:
            params["court"] = court
        if judge:
            params["assigned_to__name_last__startswith"] = judge
        if date_filed_after:
            params["date_filed__gte"] = date_filed_after
        if date_filed_before:
            params["date_filed__lte"] = date_filed_before
        return self._get_paginated("/dockets/", params=params, max_results=max_results)

    # ==================== Court Data ====================

    def get_courts(self, jurisdiction: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Get court information.

        Args:
            jurisdiction: Filter by jurisdiction type (e.g., "FD" for federal district).

        Returns:
            List of court records.
        """
        params = {"jurisdiction": jurisdiction} if jurisdiction else {}
        return self._get_paginated("/courts/", params=params)

    def get_court_detail(self, court_id: str) -> Dict[str, Any]:
        """Get detailed information about a specific court."""
        return self._get(f"/courts/{court_id}/")

    # ==================== Persistence ====================

    def save_raw(self, name: str, records: List[Dict[str, Any]]) -> Path:
        """
        Write raw records to a timestamped JSON file in ``data_dir``.

        Returns:
            Path of the written file.
        """
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        filepath = self.data_dir / f"{name}_{stamp}.json"
        with open(filepath, "w") as f:
            json.dump(records, f, indent=2, default=str)
        logger.info("Saved %d %s records to %s", len(records), name, filepath)
        return filepath


class RawRecordLoader:
    """
    Loads exported raw records from disk.

    Supports ``.json`` (a list, or an object with a ``results`` list),
    ``.jsonl`` (one record per line) and ``.csv``.
    """

    SUPPORTED = {".json", ".jsonl", ".csv"}

    def load(self, path: str) -> List[Dict[str, Any]]:
        """
        Load records from one file.

        Args:
            path: File path.

        Returns:
            List of record dictionaries.

        Raises:
            ValueError: For unsupported file types.
        """
        filepath = Path(path)
        suffix = filepath.suffix.lower()
        if suffix not in self.SUPPORTED:
            raise ValueError(f"Unsupported record file: {filepath}")

        if suffix == ".csv":
            df = pd.read_csv(filepath, dtype=str, keep_default_na=False)
            records = df.to_dict("records")
        elif suffix == ".jsonl":
            records = []
            with open(filepath) as f:
                for line_no, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(json.loads(line))
                    except json.JSONDecodeError as e:
                        logger.warning("Skipping %s:%d: %s", filepath, line_no, e)
        else:
            with open(filepath) as f:
                data = json.load(f)
            records = data.get("results", []) if isinstance(data, dict) else data

        logger.info("Loaded %d records from %s", len(records), filepath)
        return records

    def load_many(self, paths: List[str]) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for path in paths:
            records.extend(self.load(path))
        return records


class CourtListenerCollector:
    """
    Collects the raw inputs of an ingestion run for a set of courts:
    court metadata, judges with their positions, and dockets.
    """

    def __init__(self, client: CourtListenerClient):
        self.client = client

    def collect_courts(self, court_ids: List[str]) -> List[Dict[str, Any]]:
        courts = []
        for court_id in court_ids:
            try:
                courts.append(self.client.get_court_detail(court_id))
            except requests.RequestException as e:
                logger.warning("Failed to fetch court %s: %s", court_id, e)
        return courts

    def collect_judges(
        self, court: str, max_results: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Collect judges of a court, each enriched with their positions.

        Args:
            court: Court identifier.
            max_results: Maximum number of judges to fetch.

        Returns:
            List of judge records with a ``positions`` list.
        """
        judges = self.client.search_judges(court=court, max_results=max_results)

        enriched = []
        for judge in tqdm(judges, desc=f"Fetching positions ({court})"):
            judge_id = judge.get("id")
            if judge_id:
                try:
                    judge["positions"] = self.client.get_judge_positions(judge_id)
                except requests.RequestException as e:
                    logger.warning("Failed to fetch positions for judge %s: %s", judge_id, e)
                    judge["positions"] = []
            enriched.append(judge)

        logger.info("Collected %d judges for %s", len(enriched), court)
        return enriched

    def collect_all(
        self,
        court_ids: List[str],
        max_judges: Optional[int] = None,
        max_dockets: Optional[int] = None,
        date_filed_after: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Collect courts, judges, positions and dockets.

        Returns:
            Dictionary keyed by record type.
        """
        judges: List[Dict[str, Any]] = []
        dockets: List[Dict[str, Any]] = []
        for court_id in court_ids:
            judges.extend(self.collect_judges(court_id, max_results=max_judges))
            try:
                dockets.extend(self.client.search_dockets(
                    court=court_id,
                    date_filed_after=date_filed_after,
                    max_results=max_dockets,
                ))
            except requests.RequestException as e:
                logger.warning("Failed to fetch dockets for %s: %s", court_id, e)

        positions = [
            {**p, "person": p.get("person") or j.get("id")}
            for j in judges for p in j.get("positions", [])
        ]
        return {
            "courts": self.collect_courts(court_ids),
            "judges": judges,
            "positions": positions,
            "cases": dockets,
            "collection_timestamp": datetime.now(timezone.utc).isoformat(),
        }
