"""
DOM post-processing hooks run right before printing.

Hooks are cosmetic and best-effort: a missing element is a no-op, and a
failing hook only degrades the stage. New hooks register themselves in
POST_PROCESSORS under the name used in the POST_PROCESSORS setting.
"""

import asyncio
from typing import Any, Dict, List, Optional, Type

from .config import RenderSettings


class PostProcessor:
    """Base hook: an in-page script plus the argument passed to it."""

    name: str = "base"
    script: str = "() => null"

    def script_arg(self) -> Any:
        return None

    @classmethod
    def from_settings(cls, settings: RenderSettings) -> "PostProcessor":
        return cls()

    async def apply(self, page, timeout_ms: int) -> Any:
        """
        Run the hook's script in the page.

        Returns:
            Whatever the script returns (a summary of what it changed)

        Raises:
            asyncio.TimeoutError: script did not finish within timeout_ms
        """
        arg = self.script_arg()
        if arg is None:
            call = page.evaluate(self.script)
        else:
            call = page.evaluate(self.script, arg)
        return await asyncio.wait_for(call, timeout=timeout_ms / 1000)


STRIP_HEADER_SCRIPT = """
(opts) => {
    const summary = { removed: 0, adjusted: 0 };
    const header = document.querySelector(opts.headerSelector);
    if (header) {
        header.remove();
        summary.removed += 1;
    }
    for (const selector of opts.rootSelectors) {
        const el = document.querySelector(selector);
        if (!el) continue;
        el.style.marginTop = '0';
        el.style.paddingTop = '0';
        el.style.background = '#ffffff';
        summary.adjusted += 1;
    }
    if (document.body) {
        document.body.style.paddingTop = opts.topPadding;
    }
    return summary;
}
"""


class HeaderStripper(PostProcessor):
    """
    Remove the app header and flatten the top of the layout for print.

    Zeroes top margin/padding on root containers, forces a white background
    and applies a fixed top padding to the body.
    """

    name = "strip-header"
    script = STRIP_HEADER_SCRIPT

    def __init__(
        self,
        header_selector: str = "header",
        root_selectors: Optional[List[str]] = None,
        top_padding: str = "24px",
    ):
        self.header_selector = header_selector
        self.root_selectors = root_selectors if root_selectors is not None else ["html", "body", "#root"]
        self.top_padding = top_padding

    @classmethod
    def from_settings(cls, settings: RenderSettings) -> "HeaderStripper":
        return cls(
            header_selector=settings.header_selector,
            root_selectors=settings.root_selector_list,
            top_padding=settings.top_padding,
        )

    def script_arg(self) -> Dict[str, Any]:
        return {
            "headerSelector": self.header_selector,
            "rootSelectors": self.root_selectors,
            "topPadding": self.top_padding,
        }


POST_PROCESSORS: Dict[str, Type[PostProcessor]] = {
    HeaderStripper.name: HeaderStripper,
}


def build_post_processors(settings: RenderSettings) -> List[PostProcessor]:
    """
    Instantiate the hooks named in settings, in order.

    Raises:
        ValueError: a configured name has no registered hook
    """
    hooks = []
    for name in settings.post_processor_names:
        hook_cls = POST_PROCESSORS.get(name)
        if hook_cls is None:
            raise ValueError(f"Unknown post-processor: {name}")
        hooks.append(hook_cls.from_settings(settings))
    return hooks
