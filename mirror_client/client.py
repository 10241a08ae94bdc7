import json
from typing import Any, Generator

import requests

DEFAULT_SERVER_URL = "http://localhost:8000"


def _headers(token: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


def trigger_run(
    server_url: str = DEFAULT_SERVER_URL,
    token: str | None = None,
    ref: str | None = None,
    message: str = "manual trigger",
) -> dict[str, Any]:
    """
    Queue a mirror run on the server.

    Args:
        server_url: Base URL of the mirror server
        token: Bearer token for the trigger endpoint
        ref: Ref to mirror (default: the server's configured branch)
        message: Message the loop guard is applied to

    Returns:
        dict with run_id, status ("queued" or "skipped") and skip_reason

    Raises:
        RuntimeError: If the request fails due to network or server error
    """
    body: dict[str, Any] = {"message": message}
    if ref:
        body["ref"] = ref
    try:
        response = requests.post(
            f"{server_url}/runs", json=body, headers=_headers(token), timeout=30
        )
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Error triggering run: {e}")


def list_runs(
    server_url: str = DEFAULT_SERVER_URL, status: str | None = None
) -> list[dict[str, Any]]:
    """
    List run summaries, newest first.

    Raises:
        RuntimeError: If the request fails due to network or server error
    """
    params = {"status": status} if status else {}
    try:
        response = requests.get(f"{server_url}/runs", params=params, timeout=30)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Error listing runs: {e}")


def get_run(run_id: str, server_url: str = DEFAULT_SERVER_URL) -> dict[str, Any]:
    """
    Get a run with its events.

    Raises:
        RuntimeError: If the run does not exist or the request fails
    """
    try:
        response = requests.get(f"{server_url}/runs/{run_id}", timeout=30)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Error getting run {run_id}: {e}")


def wait_for_run(
    run_id: str, server_url: str = DEFAULT_SERVER_URL, from_beginning: bool = False
) -> Generator[dict, None, None]:
    """
    Wait for a run to finish, streaming its events via Server-Sent Events.

    Args:
        run_id: UUID of the run to wait for
        server_url: Base URL of the mirror server
        from_beginning: If True, replay the run's whole log first

    Yields:
        dict: Event dictionaries with 'type' and other fields:
            - {"type": "step", "data": str} - A pipeline step started
            - {"type": "log", "data": str} - Command output
            - {"type": "complete", "success": bool} - Final status
    """
    try:
        params = {"from_beginning": from_beginning} if from_beginning else {}
        response = requests.get(
            f"{server_url}/runs/{run_id}/stream",
            params=params,
            stream=True,
            timeout=300,
        )
        response.raise_for_status()

        # Parse SSE format: "data: {...}\n\n"
        for line in response.iter_lines(decode_unicode=True):
            if line and line.startswith("data: "):
                yield json.loads(line[6:])
    except requests.exceptions.RequestException as e:
        yield {"type": "log", "data": f"Error waiting for run: {e}\n"}
        yield {"type": "complete", "success": False}
