
import asyncio
import os
import sys
from playwright.async_api import async_playwright

# Add project root to path
sys.path.append(os.getcwd())

from eid_agent.config.settings import load_settings
from eid_agent.workflows.base import PORTAL_CONTRACT_VERSION, PORTAL_SELECTORS
from eid_agent.workflows.download_workflow import DOWNLOAD_SELECTORS
from eid_agent.workflows.registration_workflow import REGISTRATION_SELECTORS
from eid_agent.workflows.update_workflow import UPDATE_SELECTORS

# Selectors only present after a state change (result boxes, enabled buttons)
DYNAMIC_KEYS = {"download_button_enabled", "new_eid"}

SELECTOR_GROUPS = {
    "portal": PORTAL_SELECTORS,
    "registration": REGISTRATION_SELECTORS,
    "download": DOWNLOAD_SELECTORS,
    "update": UPDATE_SELECTORS,
}


async def verify_portal():
    settings = load_settings()
    print(f"Verifying portal contract {PORTAL_CONTRACT_VERSION} against {settings.portal_url}")

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True)
        page = await browser.new_page()
        try:
            await page.goto(settings.portal_url, timeout=settings.navigation_timeout_ms)
            print(f"Page Title: {await page.title()}")

            missing = []
            for group, selectors in SELECTOR_GROUPS.items():
                for key, selector in selectors.items():
                    if key in DYNAMIC_KEYS:
                        continue
                    if await page.locator(selector).count() == 0:
                        missing.append(f"{group}.{key} ({selector})")

            if missing:
                print(f"❌ FAILED: {len(missing)} selector(s) not found:")
                for entry in missing:
                    print(f"  - {entry}")
                return 1

            # The menu must open on hover for every workflow
            await page.hover(PORTAL_SELECTORS["menu"])
            await page.wait_for_selector(REGISTRATION_SELECTORS["menu_entry"], timeout=settings.menu_timeout_ms)
            print("✅ SUCCESS: all workflow selectors present and menu opens on hover.")
            return 0

        except Exception as e:
            print(f"Error during verification: {e}")
            return 1
        finally:
            await browser.close()

if __name__ == "__main__":
    sys.exit(asyncio.run(verify_portal()))
