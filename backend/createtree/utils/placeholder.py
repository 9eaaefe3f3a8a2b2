"""SVG placeholder images for failed or pending generations."""
from html import escape

DEFAULT_COLORS = ("#A7C1E2", "#FFFFFF")
ERROR_COLORS = ("#F07167", "#FFFFFF")
DEFAULT_TEXT = "Image could not be loaded"

# style -> (background, text)
STYLE_COLORS: dict[str, tuple[str, str]] = {
    "watercolor": ("#C9E4CA", "#1F2421"),
    "sketch": ("#E8EDDF", "#242423"),
    "cartoon": ("#FFCDB2", "#6D6875"),
    "oil": ("#B5838D", "#FFFFFF"),
    "fantasy": ("#9896F1", "#FFFFFF"),
    "storybook": ("#F28482", "#FFFFFF"),
    "ghibli": ("#8DB1AB", "#FFFFFF"),
    "disney": ("#457B9D", "#FFFFFF"),
    "korean_webtoon": ("#F5CAC3", "#333333"),
    "fairytale": ("#E0BBE4", "#333333"),
}


def placeholder_colors(style: str | None = None, error: bool = False) -> tuple[str, str]:
    if error:
        return ERROR_COLORS
    return STYLE_COLORS.get(style or "", DEFAULT_COLORS)


def render_placeholder_svg(style: str | None = None, text: str | None = None, error: bool = False) -> str:
    background, foreground = placeholder_colors(style, error)
    label = escape(text or DEFAULT_TEXT)
    return (
        '<svg xmlns="http://www.w3.org/2000/svg" width="1024" height="1024" viewBox="0 0 1024 1024">'
        f'<rect width="1024" height="1024" fill="{background}" />'
        '<text x="512" y="512" font-family="Arial, sans-serif" font-size="40" '
        f'fill="{foreground}" text-anchor="middle" dominant-baseline="middle">{label}</text>'
        "</svg>"
    )
