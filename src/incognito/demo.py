"""
Incognito — Demo Mode

Scripted session on the loopback driver.
Works without a browser: shows events, routing and storage state.

Usage:
    incognito demo
"""

from __future__ import annotations

import re

from rich.console import Console
from rich.rule import Rule

from incognito.context import BrowserContext
from incognito.driver import LoopbackDriver
from incognito.renderer import render_requests, render_storage_state

ORIGIN = "https://shop.example.com"


async def run_demo(console: Console | None = None) -> BrowserContext:
    """Run the scripted session and return the (closed) context."""
    console = console or Console()
    driver = LoopbackDriver()
    context = BrowserContext(driver, default_timeout=5000)

    context.on("page", lambda page: console.print(f"[cyan]page[/] {page.guid} {page.url}"))
    context.on("close", lambda ctx: console.print(f"[magenta]close[/] {ctx.guid}"))

    console.print(Rule("Session setup"))
    await context.add_cookies([
        {"name": "session", "value": "c0ffee", "url": ORIGIN, "httpOnly": True},
        {"name": "theme", "value": "dark", "domain": ".example.com", "path": "/"},
    ])
    await context.grant_permissions(["geolocation"], origin=ORIGIN)
    await context.set_geolocation({"latitude": 48.8584, "longitude": 2.2945})
    await context.set_extra_http_headers({"x-demo": "1"})
    await context.add_init_script("Math.random = () => 0.42;")
    console.print(f"Permissions: {dict(context.permissions)}")

    console.print(Rule("Routing"))
    await context.route("**/*.png", lambda route: route.abort("blockedbyclient"))
    await context.route(
        re.compile(r"/api/cart$"),
        lambda route: route.fulfill(body='{"items": []}', content_type="application/json"),
    )
    page = await context.new_page()
    await page.route("**/api/**", lambda route: route.continue_(headers={"x-page-route": "1"}))
    console.print(f"HTTP cache enabled: {context.cache_enabled}")

    urls = [
        f"{ORIGIN}/logo.png",
        f"{ORIGIN}/api/cart",
        f"{ORIGIN}/index.html",
    ]
    rows = [(url, await driver.request(url, page=page)) for url in urls]
    rows.append((f"{ORIGIN}/api/cart (no page)", await driver.request(f"{ORIGIN}/api/cart")))
    render_requests(rows, console)

    console.print(Rule("Popups"))
    popup = await context.wait_for_page(lambda: driver.open_popup(page, f"{ORIGIN}/help"), timeout=1000)
    console.print(f"Popup {popup.guid} opened by {popup.opener().guid}")

    console.print(Rule("Storage state"))
    driver.set_local_storage(ORIGIN, "cart-id", "42")
    render_storage_state(await context.storage_state(), console)

    await context.close()
    return context
