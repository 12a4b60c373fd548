import argparse
import os
import subprocess
import sys
import time
from typing import Dict, List

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

services: List[Dict] = [
    {
        "name": "Order Portal API",
        "cmd": [sys.executable, "-m", "uvicorn", "portal_api.main:app", "--host", "0.0.0.0", "--port", "8000"],
        "reload_flag": "--reload",
    },
    # Worker with embedded beat runs the daily quote expiry check
    {
        "name": "Celery worker",
        "cmd": [sys.executable, "-m", "celery", "-A", "portal_api.celery_app", "worker", "-B", "--loglevel", "info"],
        "delay": 2,
    },
]


def run_service(service: Dict, reload: bool = False):
    """Start one service as a subprocess rooted at the repository."""
    time.sleep(service.get("delay", 0))
    cmd = list(service["cmd"])
    if reload and service.get("reload_flag"):
        cmd.append(service["reload_flag"])
    print(f"Starting {service['name']}...")

    env = os.environ.copy()
    env["PYTHONPATH"] = BASE_DIR + (os.pathsep + env["PYTHONPATH"] if env.get("PYTHONPATH") else "")
    try:
        return subprocess.Popen(cmd, cwd=BASE_DIR, env=env)
    except OSError as e:
        print(f"Error starting {service['name']}: {e}", file=sys.stderr)
        return None


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the order portal API and its worker")
    parser.add_argument("mode", nargs="?", default="", help='Use "dev" for hot reload')
    parser.add_argument("--no-worker", action="store_true", help="Only start the API")
    args = parser.parse_args()

    dev_mode = args.mode.lower() == "dev"
    selected = services[:1] if args.no_worker else services
    print(f"Starting order portal in {'development' if dev_mode else 'production'} mode...")

    processes = [(run_service(s, reload=dev_mode), s) for s in selected]

    try:
        # Restart anything that dies
        while True:
            time.sleep(5)
            for i, (process, service) in enumerate(processes):
                if process is None or process.poll() is not None:
                    print(f"Critical: {service['name']} has stopped", file=sys.stderr)
                    processes[i] = (run_service(service, reload=dev_mode), service)
    except KeyboardInterrupt:
        print("\nShutting down all services...")
        for process, _ in processes:
            if process is not None:
                process.terminate()
        sys.exit(0)
