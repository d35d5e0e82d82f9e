# centralize imports for browser typing

from patchright._impl._errors import TargetClosedError as PatchrightTargetClosedError
from patchright.async_api import Browser as PatchrightBrowser
from patchright.async_api import BrowserContext as PatchrightBrowserContext
from patchright.async_api import Frame as PatchrightFrame
from patchright.async_api import Page as PatchrightPage
from patchright.async_api import Playwright as Patchright
from patchright.async_api import Route as PatchrightRoute
from patchright.async_api import async_playwright as _async_patchright
from playwright._impl._errors import TargetClosedError as PlaywrightTargetClosedError
from playwright.async_api import Browser as PlaywrightBrowser
from playwright.async_api import BrowserContext as PlaywrightBrowserContext
from playwright.async_api import Frame as PlaywrightFrame
from playwright.async_api import Page as PlaywrightPage
from playwright.async_api import Playwright as Playwright
from playwright.async_api import Route as PlaywrightRoute
from playwright.async_api import async_playwright as _async_playwright

# Define types to be Union[Patchright, Playwright]
Browser = PatchrightBrowser | PlaywrightBrowser
BrowserContext = PatchrightBrowserContext | PlaywrightBrowserContext
Page = PatchrightPage | PlaywrightPage
Frame = PatchrightFrame | PlaywrightFrame
Route = PatchrightRoute | PlaywrightRoute
PlaywrightOrPatchright = Patchright | Playwright
TargetClosedError = (PatchrightTargetClosedError, PlaywrightTargetClosedError)

async_patchright = _async_patchright
async_playwright = _async_playwright
