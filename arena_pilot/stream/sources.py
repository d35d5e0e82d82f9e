"""
Response sources: the two redundant channels the acquisition engine reads an answer from.

`NetworkStreamSource` wraps `window.fetch` in every document and decodes the upstream's
`a0:"..."` token stream into page globals. `ContentObservationSource` watches the chat for a
newly created answer block and snapshots it as markdown. Both expose the same
`arm()` / `read()` interface so the engine never branches on selectors.
"""
from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from arena_pilot.stream.views import ChannelKind, SourceLink, SourceSnapshot

if TYPE_CHECKING:
    from arena_pilot.browser.types import Page

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r'a0:"((?:[^"\\]|\\.)*)"')
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\"}
_ESCAPE_PATTERN = re.compile(r'\\([nrt"\\])')

RATE_LIMIT_NOTICE = "⚠️ **System Notification**\n\n{text}"


def unescape_token(raw: str) -> str:
    return _ESCAPE_PATTERN.sub(lambda m: _ESCAPES[m.group(1)], raw)


def parse_stream_chunk(chunk: str) -> list[str]:
    """Decode every `a0:"..."` text token in one chunk of the upstream stream."""
    return [unescape_token(m.group(1)) for m in TOKEN_PATTERN.finditer(chunk)]


class ResponseSource(ABC):
    kind: ChannelKind

    async def install(self, session: Any) -> None:
        """One-time setup on the session (init scripts); called before the first arm."""

    @abstractmethod
    async def arm(self, page: Page) -> None:
        """Reset channel state so only the next answer is observed."""

    @abstractmethod
    async def read(self, page: Page) -> SourceSnapshot:
        ...

    async def fallback_read(self, page: Page) -> Optional[str]:
        return None


# Runs before page scripts in every document; guarded so re-injection is harmless.
STREAM_INTERCEPTOR_JS = r"""
(() => {
    if (window.__arenaInterceptor) return;
    window.__arenaInterceptor = true;
    window._arenaTokens = '';
    window._arenaStreamDone = false;
    window._arenaStreamActive = false;
    const originalFetch = window.fetch;
    window.fetch = async function (...args) {
        const url = typeof args[0] === 'string' ? args[0] : (args[0] && args[0].url) || '';
        const response = await originalFetch.apply(this, args);
        if (!url.includes('stream')) return response;
        const contentType = response.headers.get('content-type') || '';
        if (!contentType.includes('text/event-stream') && !contentType.includes('text/plain')) return response;
        window._arenaTokens = '';
        window._arenaStreamDone = false;
        window._arenaStreamActive = true;
        const reader = response.clone().body.getReader();
        const decoder = new TextDecoder();
        const tokenRegex = /a0:"((?:[^"\\]|\\.)*)"/g;
        (async () => {
            try {
                while (true) {
                    const { done, value } = await reader.read();
                    if (done) break;
                    const chunk = decoder.decode(value, { stream: true });
                    let match;
                    while ((match = tokenRegex.exec(chunk)) !== null) {
                        window._arenaTokens += match[1]
                            .replace(/\\n/g, '\n')
                            .replace(/\\r/g, '\r')
                            .replace(/\\t/g, '\t')
                            .replace(/\\"/g, '"')
                            .replace(/\\\\/g, '\\');
                    }
                }
            } catch (e) {
                console.error('stream read failed', e);
            } finally {
                window._arenaStreamDone = true;
                window._arenaStreamActive = false;
            }
        })();
        return response;
    };
})();
"""

STREAM_RESET_JS = """
() => {
    window._arenaTokens = '';
    window._arenaStreamDone = false;
    window._arenaStreamActive = false;
    return !!window.__arenaInterceptor;
}
"""

STREAM_READ_JS = """
() => ({
    tokens: window._arenaTokens || '',
    done: !!window._arenaStreamDone,
    active: !!window._arenaStreamActive,
})
"""


class NetworkStreamSource(ResponseSource):
    kind = ChannelKind.NETWORK

    async def install(self, session: Any) -> None:
        await session.add_init_script(STREAM_INTERCEPTOR_JS)

    async def arm(self, page: Page) -> None:
        installed = await page.evaluate(STREAM_RESET_JS)
        if not installed:
            # Document predates the init script; patch fetch in place.
            await page.evaluate(STREAM_INTERCEPTOR_JS)

    async def read(self, page: Page) -> SourceSnapshot:
        state = await page.evaluate(STREAM_READ_JS)
        return SourceSnapshot(
            channel=self.kind,
            text=state.get("tokens") or "",
            done=bool(state.get("done")),
            active=bool(state.get("active")),
        )


OBSERVER_JS = r"""
() => {
    if (window._arenaObserver) window._arenaObserver.disconnect();
    if (window._arenaPollTimer) clearInterval(window._arenaPollTimer);
    window._arenaResponse = '';
    window._arenaImageUrl = '';
    window._arenaChatId = '';
    window._arenaSources = [];
    window._arenaRateLimited = false;

    const answerBlocks = () => Array.from(document.querySelectorAll('.prose')).filter(el => !el.closest('.self-end'));

    const toMarkdown = (el) => {
        const clone = el.cloneNode(true);
        clone.querySelectorAll('button, .bg-surface-raised, .citation, [data-citation]').forEach(e => e.remove());
        const blocks = [];
        clone.querySelectorAll('[data-code-block="true"]').forEach(block => {
            const lang = block.querySelector('.text-text-secondary.text-sm.font-medium');
            const code = block.querySelector('code');
            const placeholder = `__ARENA_CODE_${blocks.length}__`;
            blocks.push({ placeholder, lang: lang ? lang.textContent.trim().toLowerCase() : '', content: code ? code.textContent : '' });
            block.outerHTML = placeholder;
        });
        clone.querySelectorAll('pre > code').forEach(code => {
            const placeholder = `__ARENA_CODE_${blocks.length}__`;
            const m = (code.className || '').match(/language-(\w+)/);
            blocks.push({ placeholder, lang: m ? m[1] : '', content: code.textContent });
            code.closest('pre').outerHTML = placeholder;
        });
        let html = clone.innerHTML;
        for (let level = 1; level <= 6; level++) {
            html = html.replace(new RegExp(`<h${level}[^>]*>(.*?)</h${level}>`, 'gi'), `\n${'#'.repeat(level)} $1\n`);
        }
        html = html
            .replace(/<(strong|b)(\s[^>]*)?>(.*?)<\/\1>/gi, '**$3**')
            .replace(/<(em|i)(\s[^>]*)?>(.*?)<\/\1>/gi, '*$3*')
            .replace(/<code[^>]*>(.*?)<\/code>/gi, '`$1`')
            .replace(/<li[^>]*>(.*?)<\/li>/gi, '- $1\n')
            .replace(/<p[^>]*>(.*?)<\/p>/gi, '$1\n\n')
            .replace(/<br\s*\/?>/gi, '\n')
            .replace(/<a[^>]*href="(.*?)"[^>]*>(.*?)<\/a>/gi, '[$2]($1)');
        const tmp = document.createElement('div');
        tmp.innerHTML = html;
        let text = tmp.textContent.trim();
        for (const { placeholder, lang, content } of blocks) {
            text = text.replace(placeholder, '\n```' + lang + '\n' + content + '\n```\n');
        }
        return text;
    };

    window._arenaInitialCount = answerBlocks().length;

    const check = () => {
        const errors = Array.from(document.querySelectorAll('.text-interactive-negative, .text-red-600, .text-error, div[role="alert"]'));
        const limit = errors.find(el => {
            const t = (el.innerText || el.textContent || '').toLowerCase();
            return t.includes('rate limit') || t.includes('quota') || t.includes('too many requests')
                || (t.includes('reach') && t.includes('limit')) || t.includes('please wait');
        });
        if (limit) {
            window._arenaResponse = (limit.innerText || limit.textContent || '').trim();
            window._arenaRateLimited = true;
            return;
        }
        const blocks = answerBlocks();
        if (blocks.length <= window._arenaInitialCount) return;
        const latest = blocks[0];
        window._arenaResponse = toMarkdown(latest);
        const container = latest.closest('li') || (latest.parentElement && latest.parentElement.parentElement);
        if (container) {
            const img = container.querySelector('img.h-\\[50vh\\].w-\\[50vh\\]')
                || container.querySelector('img[alt="Generated image"]')
                || container.querySelector('img[src*="blob:"]');
            if (img) window._arenaImageUrl = img.src;
            const links = [];
            container.querySelectorAll('a[data-source], [data-sources] a').forEach(a => {
                if (a.href) links.push({ title: (a.textContent || a.href).trim(), url: a.href });
            });
            window._arenaSources = links;
        }
        const m = window.location.href.match(/\/c\/([a-f0-9-]+)/);
        if (m) window._arenaChatId = m[1];
    };

    window._arenaPollTimer = setInterval(check, 30);
    window._arenaObserver = new MutationObserver(check);
    window._arenaObserver.observe(document.body, { childList: true, subtree: true, characterData: true, attributes: true });
    return window._arenaInitialCount;
}
"""

OBSERVER_READ_JS = """
() => ({
    text: window._arenaResponse || '',
    image: window._arenaImageUrl || '',
    chatId: window._arenaChatId || '',
    sources: window._arenaSources || [],
    rateLimited: !!window._arenaRateLimited,
})
"""

FALLBACK_READ_JS = """
() => {
    const blocks = Array.from(document.querySelectorAll('.prose')).filter(el => !el.closest('.self-end'));
    return blocks.length ? blocks[0].innerText : null;
}
"""

# True when the outbound message still sits in the input or no new answer block exists.
NEEDS_RESEND_JS = """
() => {
    const textarea = document.querySelector('textarea');
    const pending = !!(textarea && textarea.value && textarea.value.length > 0);
    const blocks = Array.from(document.querySelectorAll('.prose')).filter(el => !el.closest('.self-end'));
    const noNewAnswer = blocks.length <= (window._arenaInitialCount || 0);
    return { pending, noNewAnswer };
}
"""


class ContentObservationSource(ResponseSource):
    kind = ChannelKind.CONTENT

    def __init__(self) -> None:
        self.initial_count: int = 0

    async def arm(self, page: Page) -> None:
        self.initial_count = int(await page.evaluate(OBSERVER_JS) or 0)
        logger.debug(f"👀 Answer observer armed ({self.initial_count} existing answers)")

    async def read(self, page: Page) -> SourceSnapshot:
        state = await page.evaluate(OBSERVER_READ_JS)
        text = state.get("text") or ""
        rate_limited = bool(state.get("rateLimited"))
        if rate_limited and text:
            text = RATE_LIMIT_NOTICE.format(text=text)
        return SourceSnapshot(
            channel=self.kind,
            text=text,
            active=bool(text),
            image_url=state.get("image") or None,
            chat_id=state.get("chatId") or None,
            sources=[SourceLink(**s) for s in state.get("sources") or [] if s.get("url")],
            rate_limited=rate_limited,
        )

    async def fallback_read(self, page: Page) -> Optional[str]:
        return await page.evaluate(FALLBACK_READ_JS)

    async def needs_resend(self, page: Page) -> bool:
        state = await page.evaluate(NEEDS_RESEND_JS)
        return bool(state.get("pending")) or bool(state.get("noNewAnswer"))
