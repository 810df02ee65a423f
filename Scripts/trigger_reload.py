#!/usr/bin/env python3
"""
Déclenche un rechargement de tous les clients connectés au canal /ws.

Usage:
    python Scripts/trigger_reload.py --service-url http://localhost:3000
    python Scripts/trigger_reload.py --reason "deploy" --source "ci"
    python Scripts/trigger_reload.py --get --check-health
"""

import argparse
import json
import sys
from datetime import datetime
from typing import Optional

import requests


class ReloadTrigger:
    def __init__(self, service_url: str, timeout: float = 5.0):
        self.service_url = service_url.rstrip('/')
        self.timeout = timeout

    def log(self, message: str, emoji: str = "ℹ️"):
        """Log avec timestamp."""
        timestamp = datetime.now().strftime("%H:%M:%S")
        print(f"[{timestamp}] {emoji} {message}")

    def check_health(self) -> Optional[dict]:
        try:
            response = requests.get(f"{self.service_url}/health", timeout=self.timeout)
        except requests.RequestException as e:
            self.log(f"Service injoignable: {e}", "❌")
            return None
        if response.status_code != 200:
            self.log(f"Health check en échec (code {response.status_code})", "⚠️")
            return None
        data = response.json()
        self.log(f"Service UP - version {data.get('version')} - {data.get('clients', 0)} client(s)", "✅")
        return data

    def trigger(self, reason: Optional[str] = None, source: Optional[str] = None, use_get: bool = False) -> bool:
        url = f"{self.service_url}/api/__reload__"
        try:
            if use_get:
                response = requests.get(url, timeout=self.timeout)
            else:
                payload = {k: v for k, v in {"reason": reason, "source": source}.items() if v}
                response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            self.log(f"Requête échouée: {e}", "❌")
            return False

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}

        if response.status_code != 200 or not data.get("success"):
            self.log(f"Reload refusé (code {response.status_code}): {json.dumps(data)}", "❌")
            return False

        stats = data.get("stats", {})
        self.log(
            f"Reload envoyé - ok={stats.get('successCount', 0)} "
            f"erreurs={stats.get('errorCount', 0)} total={stats.get('totalClients', 0)}",
            "🔄",
        )
        return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Déclenche un reload live sur le service de signup")
    parser.add_argument("--service-url", default="http://localhost:3000", help="URL de base du service")
    parser.add_argument("--reason", default=None, help="Raison transmise aux clients")
    parser.add_argument("--source", default=None, help="Source transmise aux clients")
    parser.add_argument("--get", action="store_true", help="Utilise la variante GET (reload de test)")
    parser.add_argument("--check-health", action="store_true", help="Interroge /health avant le reload")
    parser.add_argument("--timeout", type=float, default=5.0)
    args = parser.parse_args(argv)

    trigger = ReloadTrigger(args.service_url, timeout=args.timeout)
    if args.check_health and trigger.check_health() is None:
        return 1
    return 0 if trigger.trigger(args.reason, args.source, use_get=args.get) else 1


if __name__ == "__main__":
    sys.exit(main())
