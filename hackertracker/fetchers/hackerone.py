"""
HackerOne GraphQL client and the per-resource fetchers built on it.

Each fetcher exposes ``fetch_page(cursor) -> Page`` for one scope and
``fetch_all(scope=None)`` returning the complete entity list for a tick.
"""

from typing import Any, Callable, Dict, List, Optional

import requests
from bs4 import BeautifulSoup

from .. import __version__
from ..errors import FetchError
from ..logger import get_logger
from ..models import Participant, Report, UserThanks
from ..retry import RetryError, exponential_backoff, should_retry_http_status
from .common import Page, paginate

logger = get_logger()

GRAPHQL_URL = "https://hackerone.com/graphql"
CSRF_PAGE_URL = "https://hackerone.com/bugs"
USER_AGENT = f"hackertracker/{__version__}"

LEADERBOARD_PAGE_SIZE = 100
PROGRAMS_PAGE_SIZE = 100
THANKS_PAGE_SIZE = 100

TEAM_YEAR_THANK_QUERY = """
query TeamYearThankQuery($selectedHandle: String!, $year: Int, $cursor: String) {
  selectedTeam: team(handle: $selectedHandle) {
    id
    handle
    participants(first: 100, after: $cursor, year: $year) {
      pageInfo {
        hasNextPage
        endCursor
      }
      edges {
        rank
        ...TopParticipantParticipant
        node {
          ... on User {
            databaseId: _id
            username
            profilePicture(size: medium)
          }
        }
      }
    }
  }
}

fragment TopParticipantParticipant on ParticipantWithReputationEdge {
  reputation
}
"""

TEAM_NAME_QUERY = """
query TeamNameHacktivityQuery($handle: String!) {
  team(handle: $handle) {
    id
    handle
    name
  }
}
"""

COMPLETE_HACKTIVITY_SEARCH_QUERY = """
query CompleteHacktivitySearchQuery($queryString: String!, $from: Int, $size: Int, $sort: SortInput!) {
  search(
    index: CompleteHacktivityReportIndex
    query_string: $queryString
    from: $from
    size: $size
    sort: $sort
  ) {
    total_count
    nodes {
      __typename
      ... on HacktivityDocument {
        id
        disclosed
        has_collaboration
        severity_rating
        total_awarded_amount
        reporter {
          id
          username
        }
        team {
          handle
          name
          currency
        }
        report {
          id
          title
          report_generated_content {
            hacktivity_summary
          }
        }
      }
    }
  }
}
"""

DISCOVERY_QUERY = """
query DiscoveryQuery($query: OpportunitiesQuery!, $from: Int, $size: Int, $sort: [SortInput!]) {
  opportunities_search(query: $query, from: $from, size: $size, sort: $sort) {
    total_count
    nodes {
      __typename
      ... on OpportunityDocument {
        id
        handle
      }
    }
  }
}
"""

USER_PROFILE_THANKS_QUERY = """
query UserProfileThanks($username: String!, $pageSize: Int!, $cursor: String) {
  user(username: $username) {
    id
    username
    thanks_items(first: $pageSize, after: $cursor) {
      pageInfo {
        hasNextPage
        endCursor
      }
      edges {
        node {
          report_count
          total_report_count
          reputation
          team {
            handle
          }
        }
      }
    }
  }
}
"""


class _RetryableStatus(Exception):
    """Upstream answered with a status worth retrying (429, 5xx)."""

    def __init__(self, status_code: int):
        super().__init__(f"HackerOne returned retryable status {status_code}")
        self.status_code = status_code


def extract_csrf_token(html: str) -> Optional[str]:
    """Return the content of ``<meta name="csrf-token">``, if present."""
    soup = BeautifulSoup(html, "html.parser")
    meta = soup.find("meta", attrs={"name": "csrf-token"})
    if meta is None:
        return None
    token = meta.get("content")
    return token.strip() if token and token.strip() else None


class HackerOneClient:
    """Authenticated GraphQL client with bounded timeouts and retries."""

    def __init__(
        self,
        session_token: Optional[str] = None,
        csrf_token: Optional[str] = None,
        timeout: float = 15.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.session_token = session_token or ""
        self.csrf_token = csrf_token
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        if self.session_token:
            self.session.headers["Cookie"] = f"__Host-session={self.session_token}"
        if csrf_token:
            self.session.headers["X-CSRF-Token"] = csrf_token

    def fetch_csrf_token(self) -> str:
        """Load the bugs page with the session cookie and scrape its CSRF token."""
        try:
            resp = self.session.get(CSRF_PAGE_URL, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            raise FetchError(f"CSRF page request failed ({status})") from e
        except requests.exceptions.Timeout as e:
            raise FetchError("CSRF page request timed out") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"CSRF page request error: {e}") from e

        token = extract_csrf_token(resp.text)
        if token is None:
            raise FetchError("Unable to find CSRF token in page")
        return token

    def authenticate(self) -> None:
        """Fetch and install the CSRF token if the client has none yet."""
        if self.csrf_token:
            return
        self.csrf_token = self.fetch_csrf_token()
        self.session.headers["X-CSRF-Token"] = self.csrf_token
        logger.debug("Fetched HackerOne CSRF token")

    def _send(self, payload: Dict[str, Any]) -> requests.Response:
        resp = self.session.post(GRAPHQL_URL, json=payload, timeout=self.timeout)
        if should_retry_http_status(resp.status_code):
            raise _RetryableStatus(resp.status_code)
        return resp

    def graphql(self, operation_name: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Run one GraphQL operation and return its ``data`` object.

        Raises:
            FetchError: On timeout, transport error, bad status, undecodable
                body, or a non-empty ``errors`` list
        """
        send = exponential_backoff(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            exceptions=(
                requests.exceptions.Timeout,
                requests.exceptions.ConnectionError,
                _RetryableStatus,
            ),
            on_retry=lambda attempt, exc, delay: logger.warning(
                f"{operation_name}: retrying", attempt=attempt, delay=delay, error=str(exc)
            ),
        )(self._send)

        payload = {"operationName": operation_name, "query": query, "variables": variables}
        try:
            resp = send(payload)
            resp.raise_for_status()
            body = resp.json()
        except RetryError as e:
            raise FetchError(f"{operation_name}: {e}") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            raise FetchError(f"{operation_name}: HackerOne returned bad status ({status})") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"{operation_name}: request error: {e}") from e
        except ValueError as e:
            raise FetchError(f"{operation_name}: response is not JSON") from e

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            first = errors[0]
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise FetchError(f"{operation_name}: {message}")

        data = body.get("data") if isinstance(body, dict) else None
        if data is None:
            raise FetchError(f"{operation_name}: response data not found")
        return data

    def team_exists(self, handle: str) -> bool:
        """True when the team is visible to this session."""
        data = self.graphql(
            "TeamNameHacktivityQuery", TEAM_NAME_QUERY, {"handle": handle}
        )
        return data.get("team") is not None

    def team_name(self, handle: str) -> str:
        data = self.graphql(
            "TeamNameHacktivityQuery", TEAM_NAME_QUERY, {"handle": handle}
        )
        team = data.get("team")
        if team is None or not team.get("name"):
            raise FetchError(f"Team {handle} not found")
        return team["name"]


def parse_leaderboard_page(data: Dict[str, Any], handle: str) -> Page:
    team = data.get("selectedTeam")
    if team is None:
        raise FetchError(f"Team {handle} not found or not visible to this session")

    participants = team.get("participants")
    if participants is None:
        logger.warning(f"{handle} returned no participants")
        return Page([], None, False)

    team_handle = team.get("handle") or handle
    items: List[Participant] = []
    for edge in participants.get("edges") or []:
        if not edge:
            continue
        node = edge.get("node") or {}
        rank = edge.get("rank")
        items.append(Participant(
            reputation=int(edge.get("reputation") or 0),
            rank=int(rank) if rank is not None else -1,
            user_name=node.get("username") or "",
            user_profile_image_url=node.get("profilePicture") or "",
            user_id=str(node.get("databaseId") or ""),
            team_handle=team_handle,
        ))

    page_info = participants.get("pageInfo") or {}
    return Page(items, page_info.get("endCursor"), bool(page_info.get("hasNextPage")))


def parse_report_node(node: Dict[str, Any]) -> Optional[Report]:
    """Build a Report from a hacktivity node; None for anything not disclosed."""
    if not node or node.get("__typename", "HacktivityDocument") != "HacktivityDocument":
        return None
    report = node.get("report")
    if not node.get("disclosed") or report is None:
        return None
    if report.get("id") is None:
        raise FetchError("CompleteHacktivitySearchQuery: disclosed report has no id")

    team = node.get("team") or {}
    generated = report.get("report_generated_content")
    summary = None
    if generated is not None:
        summary = generated.get("hacktivity_summary") or "This report does not have a summary"

    reporter = node.get("reporter")
    awarded = node.get("total_awarded_amount")
    severity = node.get("severity_rating")

    return Report(
        id=str(report["id"]),
        title=report.get("title"),
        url=f"https://hackerone.com/reports/{node.get('id') or report['id']}",
        user_name=reporter.get("username") if reporter else "(unknown)",
        user_id=str(reporter.get("id")) if reporter else "1",
        currency=team.get("currency") or "(unknown currency)",
        awarded_amount=float(awarded) if awarded is not None else -1.0,
        summary=summary,
        severity=severity.lower() if severity else "unknown",
        collaboration=bool(node.get("has_collaboration")),
        disclosed=True,
        team_handle=team.get("handle"),
    )


class LeaderboardFetcher:
    """Participants of one or more program reputation leaderboards."""

    def __init__(
        self,
        client: HackerOneClient,
        team_handle: Optional[str] = None,
        programs: Optional[Callable[[], List[str]]] = None,
        year: Optional[int] = None,
    ):
        self.client = client
        self.team_handle = team_handle
        self.programs = programs
        self.year = year

    def scopes(self) -> List[str]:
        if self.team_handle:
            return [self.team_handle]
        if self.programs is None:
            return []
        return sorted(self.programs())

    def fetch_page(self, handle: str, cursor: Optional[str]) -> Page:
        logger.debug("Fetching leaderboard page", handle=handle, cursor=cursor or "")
        data = self.client.graphql(
            "TeamYearThankQuery",
            TEAM_YEAR_THANK_QUERY,
            {"selectedHandle": handle, "year": self.year, "cursor": cursor or ""},
        )
        return parse_leaderboard_page(data, handle)

    def fetch_all(self, scope: Optional[str] = None) -> List[Participant]:
        scopes = [scope] if scope else self.scopes()
        if not scopes:
            raise FetchError("No programs to poll yet; the programs directory is empty")

        leaderboard: List[Participant] = []
        for handle in scopes:
            leaderboard.extend(
                paginate(lambda cursor, h=handle: self.fetch_page(h, cursor), label=f"leaderboard {handle}")
            )
        logger.debug(f"Fetched {len(leaderboard)} participants", programs=len(scopes))
        return leaderboard


class ReportsFetcher:
    """Most recently disclosed reports, optionally for a single program."""

    def __init__(
        self,
        client: HackerOneClient,
        team_handle: Optional[str] = None,
        page_size: int = 10,
    ):
        self.client = client
        self.team_handle = team_handle
        self.page_size = page_size
        self._team_names: Dict[str, str] = {}

    def query_string(self, scope: Optional[str]) -> str:
        query = "disclosed:true"
        if scope:
            if scope not in self._team_names:
                self._team_names[scope] = self.client.team_name(scope)
            query += f' && team:("{self._team_names[scope]}")'
        return query

    def fetch_page(self, cursor: Optional[str], scope: Optional[str] = None) -> Page:
        # Only the newest page is tracked; older disclosures are not re-read.
        data = self.client.graphql(
            "CompleteHacktivitySearchQuery",
            COMPLETE_HACKTIVITY_SEARCH_QUERY,
            {
                "queryString": self.query_string(scope),
                "from": 0,
                "size": self.page_size,
                "sort": {"field": "latest_disclosable_activity_at", "direction": "DESC"},
            },
        )
        search = data.get("search")
        if search is None:
            raise FetchError("CompleteHacktivitySearchQuery: search result missing")

        items = []
        for node in search.get("nodes") or []:
            report = parse_report_node(node)
            if report is not None:
                items.append(report)
        return Page(items, None, False)

    def fetch_all(self, scope: Optional[str] = None) -> List[Report]:
        scope = scope or self.team_handle
        return paginate(lambda cursor: self.fetch_page(cursor, scope), label="hacktivity")


class ProgramsFetcher:
    """Handles of every program listed in the opportunities directory."""

    def __init__(self, client: HackerOneClient, page_size: int = PROGRAMS_PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def fetch_page(self, cursor: Optional[str]) -> Page:
        offset = int(cursor) if cursor else 0
        data = self.client.graphql(
            "DiscoveryQuery",
            DISCOVERY_QUERY,
            {
                "query": {},
                "from": offset,
                "size": self.page_size,
                "sort": [{"field": "launched_at", "direction": "DESC"}],
            },
        )
        search = data.get("opportunities_search")
        if search is None:
            raise FetchError("DiscoveryQuery: opportunities_search missing")

        nodes = search.get("nodes") or []
        handles = [
            n["handle"] for n in nodes
            if n and n.get("__typename", "OpportunityDocument") == "OpportunityDocument" and n.get("handle")
        ]
        next_offset = offset + len(nodes)
        total = search.get("total_count")
        has_more = bool(nodes) and total is not None and next_offset < int(total)
        return Page(handles, str(next_offset), has_more)

    def fetch_all(self, scope: Optional[str] = None) -> List[str]:
        handles = paginate(self.fetch_page, label="programs")
        return list(dict.fromkeys(handles))


def parse_thanks_page(data: Dict[str, Any], username: str, team_handle: Optional[str] = None) -> Page:
    """Thanks entries of one user's profile, limited to ``team_handle`` when given."""
    user = data.get("user")
    if user is None:
        # Deleted or renamed since the leaderboard was stored.
        logger.warning(f"User {username} not found, skipping their thanks")
        return Page([], None, False)

    thanks = user.get("thanks_items")
    if thanks is None:
        raise FetchError(f"UserProfileThanks: {username} has no thanks list")

    items: List[UserThanks] = []
    for edge in thanks.get("edges") or []:
        node = (edge or {}).get("node")
        team = (node or {}).get("team")
        if not team or not team.get("handle"):
            continue
        if team_handle and team["handle"] != team_handle:
            continue

        resolved = int(node.get("report_count") or 0)
        total = int(node.get("total_report_count") or 0)
        items.append(UserThanks(
            user_id=str(user.get("id") or ""),
            user_name=user.get("username") or username,
            resolved_report_count=resolved,
            invalid_report_count=total - resolved,
            total_report_count=total,
            reputation=int(node.get("reputation") or 0),
            team_handle=team["handle"],
        ))

    page_info = thanks.get("pageInfo") or {}
    return Page(items, page_info.get("endCursor"), bool(page_info.get("hasNextPage")))


class ThanksFetcher:
    """Per-program report counts of every researcher on the stored leaderboard."""

    def __init__(
        self,
        client: HackerOneClient,
        users: Callable[[], List[str]],
        team_handle: Optional[str] = None,
        page_size: int = THANKS_PAGE_SIZE,
    ):
        self.client = client
        self.users = users
        self.team_handle = team_handle
        self.page_size = page_size

    def fetch_page(self, username: str, cursor: Optional[str], scope: Optional[str] = None) -> Page:
        data = self.client.graphql(
            "UserProfileThanks",
            USER_PROFILE_THANKS_QUERY,
            {"username": username, "pageSize": self.page_size, "cursor": cursor or ""},
        )
        return parse_thanks_page(data, username, scope)

    def fetch_all(self, scope: Optional[str] = None) -> List[UserThanks]:
        scope = scope or self.team_handle
        usernames = self.users()
        if not usernames:
            raise FetchError("No leaderboard stored yet; thanks are read for its researchers")

        thanks: List[UserThanks] = []
        for username in usernames:
            thanks.extend(
                paginate(lambda cursor, u=username: self.fetch_page(u, cursor, scope), label=f"thanks {username}")
            )
        logger.debug(f"Fetched {len(thanks)} thanks entries", users=len(usernames))
        return thanks
