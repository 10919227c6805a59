"""Locust profile for redirect-heavy load against a running redirector.

Each user registers a pool of tokens on start, then spends its time following
random ones without chasing the redirect, so every request exercises the
token cache and the hit counters rather than the target site.

Run::
    locust -f stress/locustfile.py --host http://localhost:8080
"""

import random

from locust import HttpUser, between, task

TOKENS_PER_USER = 50
TARGET = "http://example.com"


class RedirectUser(HttpUser):
    """Registers a token pool, then mostly redirects."""

    wait_time = between(0.01, 0.1)

    def on_start(self) -> None:
        self.tokens: list[str] = []
        for _ in range(TOKENS_PER_USER):
            self.register()

    def register(self) -> None:
        with self.client.post(
            "/admin/tokens",
            json={"target": TARGET},
            name="POST /admin/tokens",
            catch_response=True,
        ) as response:
            if response.status_code != 201:
                response.failure(f"expected 201, got {response.status_code}")
                return
            self.tokens.append(response.json()["token"])

    @task(20)
    def redirect(self) -> None:
        if not self.tokens:
            self.register()
            return

        token = random.choice(self.tokens)
        with self.client.get(
            f"/{token}",
            name="GET /:token",
            allow_redirects=False,
            catch_response=True,
        ) as response:
            if response.status_code != 307:
                response.failure(f"expected 307, got {response.status_code}")

    @task(1)
    def register_more(self) -> None:
        self.register()
