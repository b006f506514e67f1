from datetime import datetime

import requests

import config

GITHUB_API_BASE = 'https://api.github.com'


def trigger_worker(is_cron=False, session=None):
    """
    Ask the worker host to drain the scrape queue. Returns as soon as the
    worker acknowledges; the scrape itself runs there.
    """
    if not config.RAILWAY_SERVICE_URL:
        print("[Worker] RAILWAY_SERVICE_URL is not set")
        return {'success': False, 'message': 'RAILWAY_SERVICE_URL is not configured'}

    http = session or requests
    try:
        response = http.post(
            f"{config.RAILWAY_SERVICE_URL}/trigger",
            json={'isCron': bool(is_cron)},
            timeout=config.WORKER_TIMEOUT_SECONDS
        )
    except requests.RequestException as e:
        print(f"[Worker] Trigger error: {e}")
        return {'success': False, 'message': 'Failed to trigger worker', 'error': str(e)}

    if not response.ok:
        print(f"[Worker] Trigger failed: {response.status_code} {response.text}")
        return {
            'success': False,
            'message': 'Failed to trigger worker',
            'error': f"Worker returned {response.status_code}: {response.text}",
        }

    worker_response = _json_or_text(response)
    print(f"[Worker] Triggered (cron={bool(is_cron)}): {worker_response}")
    return {
        'success': True,
        'message': 'Scrape queue worker triggered',
        'timestamp': datetime.now().isoformat(),
        'workerResponse': worker_response,
    }


def wake_worker(session=None):
    """Warm the worker host up before the scrape window starts."""
    if not config.RAILWAY_SERVICE_URL:
        print("[Worker] RAILWAY_SERVICE_URL is not set")
        return {'success': False, 'message': 'RAILWAY_SERVICE_URL is not configured'}

    http = session or requests
    try:
        response = http.get(f"{config.RAILWAY_SERVICE_URL}/wake",
                            timeout=config.WORKER_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        print(f"[Worker] Wake error: {e}")
        return {'success': False, 'message': 'Failed to wake worker', 'error': str(e)}

    if not response.ok:
        print(f"[Worker] Wake failed: {response.status_code} {response.text}")
        return {
            'success': False,
            'message': 'Failed to wake worker',
            'error': f"Worker returned {response.status_code}: {response.text}",
        }

    return {
        'success': True,
        'message': 'Worker woken up',
        'timestamp': datetime.now().isoformat(),
        'workerResponse': _json_or_text(response),
    }


def trigger_github_workflow(session=None):
    """Dispatch the scrape-queue workflow on GitHub Actions (alternative worker)."""
    if not config.GITHUB_ACTIONS_TOKEN or not config.GITHUB_REPO:
        print("[Worker] GITHUB_ACTIONS_TOKEN or GITHUB_REPO not set, leaving it to the next cron run")
        return {
            'success': True,
            'message': 'The scrape queue will be processed on the next scheduled run',
            'note': 'Set GITHUB_ACTIONS_TOKEN and GITHUB_REPO to trigger the worker from the dashboard',
        }

    url = (f"{GITHUB_API_BASE}/repos/{config.GITHUB_REPO}/actions/workflows/"
           f"{config.GITHUB_WORKFLOW_FILE}/dispatches")
    http = session or requests
    try:
        response = http.post(
            url,
            headers={
                'Authorization': f"Bearer {config.GITHUB_ACTIONS_TOKEN}",
                'Accept': 'application/vnd.github+json',
                'X-GitHub-Api-Version': '2022-11-28',
            },
            json={'ref': config.GITHUB_REF, 'inputs': {}},
            timeout=config.WORKER_TIMEOUT_SECONDS
        )
    except requests.RequestException as e:
        print(f"[Worker] GitHub dispatch error: {e}")
        return {'success': False, 'message': 'Failed to trigger GitHub Actions workflow', 'error': str(e)}

    if not response.ok:
        print(f"[Worker] GitHub Actions API error: {response.status_code} {response.text}")
        return {
            'success': False,
            'message': 'Failed to trigger GitHub Actions workflow',
            'error': f"GitHub API returned {response.status_code}: {response.text}",
        }

    print("[Worker] GitHub Actions workflow dispatched")
    return {'success': True, 'message': 'Scrape queue worker dispatched via GitHub Actions'}


def _json_or_text(response):
    try:
        return response.json()
    except ValueError:
        return response.text
