"""
git-jira-timelog core

Reads the latest git commit message, finds the Jira ticket it references
(JNYY-123 by default), confirms the ticket exists and asks how long the
work took. The answer is posted to the ticket as a worklog entry.

- Credentials come from config.ini ([jira] section), the environment or a .env file.
- One ticket lookup and at most one worklog POST per run; neither is retried.
- Exit status 0 on success or when the commit carries no ticket, 1 otherwise.
"""

import argparse
import configparser
import os
import re
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import requests
import urllib3
from dotenv import load_dotenv

DEFAULT_PROJECT_KEY = "JNYY"
DEFAULT_COMMENT = "Work logged via git commit"
INVALID_INPUT_MSG = "Invalid input. Please try again."

# setting name -> environment variable
REQUIRED_SETTINGS = {
    "base_url": "JIRA_BASE_URL",
    "email": "JIRA_EMAIL",
    "token": "JIRA_API_TOKEN",
}

TIME_FORMAT = re.compile(r"(\d+w)?(\d+d)?(\d+h)?(\d+m)?")

SECONDS_PER_UNIT = {
    "w": 7 * 24 * 60 * 60,
    "d": 24 * 60 * 60,
    "h": 60 * 60,
    "m": 60,
}

GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
RED = "\x1b[31m"
BLUE = "\x1b[34m"
BOLD = "\x1b[1m"
RESET = "\x1b[0m"


def paint(color: str, text: str) -> str:
    """Wrap text in an ANSI color code."""
    return f"{color}{text}{RESET}"


def vprint(verbose: bool, *args, **kwargs):
    """Print arguments only when verbose is True."""
    if verbose:
        print(*args, **kwargs)


def eprint(category: str, *args):
    """Print a red category prefix followed by args to stderr."""
    print(paint(RED, category), *args, file=sys.stderr)


class JiraApiError(Exception):
    """Jira answered with an unexpected status, or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class WorklogError(JiraApiError):
    """The worklog POST failed."""


class PromptAborted(Exception):
    """The operator could not (or did not) answer a prompt."""


@dataclass(frozen=True)
class JiraConfig:
    """Connection settings, built once at startup and passed to every HTTP call."""

    base_url: str
    email: str
    token: str
    project_key: str = DEFAULT_PROJECT_KEY
    verify_ssl: bool = True
    ca_bundle: str = ""
    http_proxy: str = ""
    https_proxy: str = ""
    timeout: Optional[float] = None


@dataclass(frozen=True)
class TicketFound:
    key: str
    issue: Dict[str, Any] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return True

    @property
    def summary(self) -> str:
        return (self.issue.get("fields") or {}).get("summary", "")


@dataclass(frozen=True)
class TicketNotFound:
    key: str
    error: str = "Ticket not found"

    @property
    def exists(self) -> bool:
        return False


@dataclass(frozen=True)
class TicketLookupFailed:
    """Any lookup outcome other than 2xx or 404: HTTP error, transport error, bad JSON."""

    key: str
    message: str
    status_code: Optional[int] = None
    body: str = ""

    @property
    def exists(self) -> bool:
        return False


TicketLookup = Union[TicketFound, TicketNotFound, TicketLookupFailed]


def _as_bool(s: str, default: bool = True) -> bool:
    if not s or not s.strip():
        return default
    return s.strip().lower() in ("1", "true", "yes", "on")


def _as_timeout(s: str) -> Optional[float]:
    """Parse a timeout in seconds; empty or non-positive means no timeout."""
    if not s or not s.strip():
        return None
    try:
        value = float(s.strip())
    except ValueError:
        return None
    return value if value > 0 else None


def read_config(path: str = "", environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Read connection settings from an INI file with environment fallback.

    The INI file is optional. Every key of its [jira] section falls back to
    the matching JIRA_* environment variable when empty or absent. Nothing is
    validated here; see missing_settings().

    Args:
        path: Path to config.ini. Empty string skips the file.
        environ: Mapping to read variables from. Defaults to os.environ.

    Returns:
        Dict[str, Any]: Normalized settings.
    """
    env = os.environ if environ is None else environ
    cp = configparser.ConfigParser()
    if path:
        if not cp.read(path, encoding="utf-8"):
            print(f"WARNING: config file {path} not found or unreadable; using environment only.", file=sys.stderr)
        elif "jira" not in cp:
            print(f"WARNING: {path} has no [jira] section; using environment only.", file=sys.stderr)
    sec = cp["jira"] if "jira" in cp else {}

    def pick(key: str, env_name: str, default: str = "") -> str:
        return (sec.get(key, "").strip() or env.get(env_name, "").strip() or default)

    return {
        "base_url": pick("base_url", "JIRA_BASE_URL").rstrip("/"),
        "email": pick("email", "JIRA_EMAIL"),
        "token": pick("api_token", "JIRA_API_TOKEN"),
        "project_key": pick("project_key", "JIRA_PROJECT_KEY", DEFAULT_PROJECT_KEY).upper(),
        "verify_ssl": _as_bool(pick("verify_ssl", "JIRA_VERIFY_SSL")),
        "ca_bundle": pick("ca_bundle", "JIRA_CA_BUNDLE"),
        "http_proxy": sec.get("http_proxy", "").strip(),
        "https_proxy": sec.get("https_proxy", "").strip(),
        "timeout": _as_timeout(pick("timeout", "JIRA_TIMEOUT")),
    }


def missing_settings(cfg: Dict[str, Any]) -> List[str]:
    """Return the environment variable names of required settings that are empty."""
    return [env_name for key, env_name in REQUIRED_SETTINGS.items() if not cfg.get(key)]


def validate_environment(cfg: Dict[str, Any]) -> bool:
    """Report every missing credential on stderr. Returns True when none is missing."""
    missing = missing_settings(cfg)
    if missing:
        eprint("Missing required environment variables:")
        for name in missing:
            print(f"  - {name}", file=sys.stderr)
        print(paint(YELLOW, "\nPlease check your .env file or config.ini"), file=sys.stderr)
        return False
    return True


def config_from_dict(cfg: Dict[str, Any]) -> JiraConfig:
    return JiraConfig(
        base_url=cfg["base_url"],
        email=cfg["email"],
        token=cfg["token"],
        project_key=cfg.get("project_key") or DEFAULT_PROJECT_KEY,
        verify_ssl=bool(cfg.get("verify_ssl", True)),
        ca_bundle=cfg.get("ca_bundle", ""),
        http_proxy=cfg.get("http_proxy", ""),
        https_proxy=cfg.get("https_proxy", ""),
        timeout=cfg.get("timeout"),
    )


def make_session(email: str, token: str, verify: Optional[bool] = True, ca_bundle: Optional[str] = "",
                 http_proxy: str = "", https_proxy: str = "") -> requests.Session:
    """Build the one session a run uses for the issue GET and the worklog POST.

    The session carries Basic auth (email as user, API token as password), so
    both calls send ``Authorization: Basic base64(email:token)``. A CA bundle
    path, when set, takes the place of the plain on/off ``verify`` flag.
    Proxies are only set for the schemes given.
    """
    s = requests.Session()
    s.auth = (email, token)
    s.headers["Accept"] = "application/json"
    proxies = {scheme: url for scheme, url in (("http", http_proxy), ("https", https_proxy)) if url}
    s.proxies.update(proxies)
    s.verify = ca_bundle or verify
    return s


def session_for(config: JiraConfig) -> requests.Session:
    if not config.verify_ssl and not config.ca_bundle:
        sys.stderr.write("WARNING: SSL certificate verification is DISABLED. Use only for testing.\n")
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    return make_session(config.email, config.token, verify=config.verify_ssl, ca_bundle=config.ca_bundle,
                        http_proxy=config.http_proxy, https_proxy=config.https_proxy)


def get_latest_commit_message(cwd: Optional[str] = None) -> Optional[str]:
    """Return the full message (subject and body) of the latest commit.

    Returns None when git is missing or fails, e.g. outside a repository
    or in one without commits.
    """
    try:
        result = subprocess.run(
            ["git", "log", "-1", "--pretty=%B"],
            cwd=cwd,
            check=True,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except subprocess.CalledProcessError as e:
        eprint("Error getting commit message:", (e.stderr or "").strip() or f"git exited with {e.returncode}")
        return None
    except OSError as e:
        eprint("Error getting commit message:", e)
        return None
    return result.stdout.strip()


def extract_ticket(commit_message: str, project_key: str = DEFAULT_PROJECT_KEY) -> Optional[str]:
    """Return the first ``<PROJECT>-<digits>`` token in the message, uppercased.

    Matching is case-insensitive and word-bounded, so ``jnyy-42``,
    ``[JNYY-42]`` and ``feat: JNYY-42 add login`` all give ``JNYY-42``.
    Only the first ticket is used.
    """
    if not commit_message:
        return None
    pattern = re.compile(rf"\b({re.escape(project_key)}-\d+)\b", re.IGNORECASE)
    m = pattern.search(commit_message)
    return m.group(1).upper() if m else None


def validate_time_format(time_string: str) -> bool:
    """Accept e.g. 30m, 1h, 2h30m, 1d, 1w; units in w/d/h/m order, each at most once."""
    return bool(TIME_FORMAT.fullmatch(time_string)) and len(time_string) > 0


def time_to_seconds(time_string: str) -> int:
    """Convert a duration string to seconds.

    Each unit is looked up on its own, so ordering is not enforced here:
    "1h1w" converts fine even though validate_time_format rejects it.
    A day is 24h and a week is 7 days.
    """
    total = 0
    for unit, seconds in SECONDS_PER_UNIT.items():
        m = re.search(rf"(\d+){unit}", time_string)
        if m:
            total += int(m.group(1)) * seconds
    return total


def format_started(now: Optional[datetime] = None) -> str:
    """Format a timestamp as Jira expects: UTC, milliseconds, ``+0000`` offset instead of ``Z``."""
    now = now or datetime.now(tz=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S") + f".{now.microsecond // 1000:03d}+0000"


def adf_paragraph(text: str) -> Dict[str, Any]:
    """Wrap plain text in a single-paragraph Atlassian Document Format document."""
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {
                "type": "paragraph",
                "content": [{"type": "text", "text": text}],
            }
        ],
    }


def build_worklog_payload(time_spent: str, comment: str = "", now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "timeSpentSeconds": time_to_seconds(time_spent),
        "comment": adf_paragraph(comment or DEFAULT_COMMENT),
        "started": format_started(now),
    }


def check_ticket(session: requests.Session, config: JiraConfig, ticket_key: str,
                 verbose: bool = False) -> TicketLookup:
    """Look up a ticket by key.

    A 404 is an ordinary answer and yields TicketNotFound. Other non-2xx
    statuses, transport failures and unparseable bodies yield
    TicketLookupFailed; the details are printed to stderr.

    Args:
        session: Session from make_session().
        config: Connection settings.
        ticket_key: Ticket key such as JNYY-42.
        verbose: Whether to log request details.

    Returns:
        TicketLookup: TicketFound, TicketNotFound or TicketLookupFailed.
    """
    url = f"{config.base_url}/rest/api/3/issue/{ticket_key}"
    vprint(verbose, f"GET {url}")
    try:
        r = session.get(url, headers={"Accept": "application/json"}, timeout=config.timeout)
    except requests.exceptions.RequestException as e:
        eprint("Jira API error (ticket check):", e)
        return TicketLookupFailed(ticket_key, f"Could not reach Jira: {e}")

    vprint(verbose, f"-> HTTP {r.status_code}")
    if r.status_code == 404:
        return TicketNotFound(ticket_key)
    if not (200 <= r.status_code < 300):
        body = getattr(r, "text", "")
        eprint("Jira API error (ticket check):", f"HTTP {r.status_code}: {body}")
        return TicketLookupFailed(ticket_key, f"HTTP {r.status_code}: {body}", r.status_code, body)
    try:
        issue = r.json()
    except ValueError as e:
        body = getattr(r, "text", "")
        eprint("Jira API error (ticket check):", f"malformed JSON: {e}")
        return TicketLookupFailed(ticket_key, f"Malformed JSON from Jira: {e}", r.status_code, body)
    if not isinstance(issue, dict):
        body = getattr(r, "text", "")
        eprint("Jira API error (ticket check):", f"expected a JSON object, got {type(issue).__name__}")
        return TicketLookupFailed(ticket_key, "Malformed issue body from Jira", r.status_code, body)
    return TicketFound(ticket_key, issue)


def log_work_time(session: requests.Session, config: JiraConfig, ticket_key: str, time_spent: str,
                  comment: str = "", verbose: bool = False, now: Optional[datetime] = None) -> Optional[Any]:
    """POST a worklog entry to the ticket. Not retried.

    Returns:
        Optional[Any]: Parsed response body, or None when the body is empty.

    Raises:
        WorklogError: on a non-2xx status, a transport failure or a malformed body.
    """
    url = f"{config.base_url}/rest/api/3/issue/{ticket_key}/worklog"
    payload = build_worklog_payload(time_spent, comment, now=now)
    vprint(verbose, f"POST {url} timeSpentSeconds={payload['timeSpentSeconds']} started={payload['started']}")
    try:
        r = session.post(
            url,
            json=payload,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=config.timeout,
        )
    except requests.exceptions.RequestException as e:
        eprint("Jira API error (worklog):", e)
        raise WorklogError(f"Failed to log work time: {e}") from e

    vprint(verbose, f"-> HTTP {r.status_code}")
    body = getattr(r, "text", "") or ""
    if not (200 <= r.status_code < 300):
        eprint("Jira API error (worklog):", f"HTTP {r.status_code}: {body}")
        raise WorklogError(f"Failed to log work time: HTTP {r.status_code}: {body}", r.status_code, body)
    if not body.strip():
        return None
    try:
        return r.json()
    except ValueError as e:
        raise WorklogError(f"Failed to log work time: malformed JSON: {e}", r.status_code, body) from e


def prompt_user(question: str, validator: Optional[Callable[[str], bool]] = None,
                max_attempts: Optional[int] = None) -> str:
    """Ask a question until the (trimmed) answer passes the validator.

    Args:
        question: Text shown before the cursor.
        validator: Predicate on the trimmed answer; None accepts anything.
        max_attempts: Give up after this many rejected answers. None asks forever.

    Raises:
        PromptAborted: on end of input or once max_attempts is exhausted.
    """
    attempts = 0
    while True:
        try:
            answer = input(question).strip()
        except EOFError:
            raise PromptAborted("No input available (stdin closed)") from None
        if validator is None or validator(answer):
            return answer
        print(paint(RED, INVALID_INPUT_MSG))
        attempts += 1
        if max_attempts is not None and attempts >= max_attempts:
            raise PromptAborted(f"No valid answer after {attempts} attempts")


def local_env_file() -> str:
    """Return ./.env when it exists in the working directory, else an empty string."""
    path = os.path.join(os.getcwd(), ".env")
    return path if os.path.isfile(path) else ""


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse the (all optional) command-line flags."""
    p = argparse.ArgumentParser(
        prog="git-jira-timelog",
        description="Log time to the Jira ticket referenced by the latest git commit.",
    )
    p.add_argument("--config", default="", help="Optional config.ini with a [jira] section")
    p.add_argument("--env-file", default="", help="dotenv file to load (default: .env in the working directory, if present)")
    p.add_argument("--verbose", action="store_true", help="Print request details")
    p.add_argument("--insecure", action="store_true", help="Disable SSL verification (NOT RECOMMENDED)")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Run the commit -> ticket -> worklog pipeline once.

    Returns normally on success; exits with status 0 when the commit has no
    ticket and with status 1 on every failure.
    """
    args = parse_args(argv)
    verbose = args.verbose

    env_file = args.env_file or local_env_file()
    if env_file:
        load_dotenv(env_file, override=False)
        vprint(verbose, f"Loaded environment from {env_file}")

    cfg = read_config(args.config)
    if not validate_environment(cfg):
        sys.exit(1)
    if args.insecure:
        cfg["verify_ssl"] = False
    config = config_from_dict(cfg)

    commit_message = get_latest_commit_message()
    if not commit_message:
        eprint("Could not retrieve commit message")
        sys.exit(1)

    print(f"{paint(BLUE, 'Commit message:')} {commit_message}")

    ticket_key = extract_ticket(commit_message, config.project_key)
    if not ticket_key:
        print(paint(YELLOW, "No Jira ticket found in commit message. Skipping time logging."))
        sys.exit(0)

    print(f"{paint(GREEN, 'Found Jira ticket:')} {paint(BOLD, ticket_key)}")

    session = session_for(config)
    try:
        print(paint(BLUE, "Checking if ticket exists..."))
        lookup = check_ticket(session, config, ticket_key, verbose=verbose)
        if isinstance(lookup, TicketNotFound):
            eprint(f"Ticket {ticket_key} not found in Jira")
            sys.exit(1)
        if isinstance(lookup, TicketLookupFailed):
            eprint("Error:", lookup.message)
            sys.exit(1)

        print(f"{paint(GREEN, '✓ Ticket found:')} {lookup.summary}")

        time_spent = prompt_user(
            paint(BLUE, "Enter time spent (e.g., 30m, 1h, 2h30m):") + " ",
            validate_time_format,
        )
        comment = prompt_user(paint(BLUE, "Enter work comment (optional):") + " ")

        print(paint(BLUE, "Logging work time to Jira..."))
        log_work_time(session, config, ticket_key, time_spent, comment, verbose=verbose)
    except (JiraApiError, PromptAborted) as e:
        eprint("Error:", e)
        sys.exit(1)
    except KeyboardInterrupt:
        print(file=sys.stderr)
        eprint("Cancelled:", "no time was logged.")
        sys.exit(1)
    finally:
        session.close()

    print(paint(GREEN, f"✓ Successfully logged {time_spent} to {ticket_key}"))
    if comment:
        print(paint(GREEN, f"  Comment: {comment}"))


if __name__ == "__main__":
    main()
