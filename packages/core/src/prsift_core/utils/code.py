NON_CODE_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".bmp",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".otf",
    ".mp4",
    ".mp3",
    ".wav",
    ".ogg",
    ".zip",
    ".tar",
    ".gz",
    ".rar",
    ".7z",
    ".lock",  # e.g. package-lock.json, Pipfile.lock
}

LANGUAGE_MAP = {
    "js": "JavaScript",
    "jsx": "React",
    "ts": "TypeScript",
    "tsx": "React TypeScript",
    "py": "Python",
    "java": "Java",
    "cpp": "C++",
    "c": "C",
    "cs": "C#",
    "go": "Go",
    "rb": "Ruby",
    "php": "PHP",
    "swift": "Swift",
    "kt": "Kotlin",
    "rs": "Rust",
    "scala": "Scala",
    "r": "R",
    "m": "Objective-C",
    "mm": "Objective-C++",
    "h": "C/C++ Header",
    "hpp": "C++ Header",
    "sh": "Shell",
    "bash": "Bash",
    "zsh": "Zsh",
    "fish": "Fish",
    "sql": "SQL",
    "html": "HTML",
    "css": "CSS",
    "scss": "SCSS",
    "less": "Less",
    "json": "JSON",
    "yaml": "YAML",
    "yml": "YAML",
    "toml": "TOML",
    "md": "Markdown",
    "rst": "reStructuredText",
    "tex": "LaTeX",
    "vue": "Vue",
    "svelte": "Svelte",
    "astro": "Astro",
}


def is_code_file(file_name: str) -> bool:
    return not any(file_name.lower().endswith(ext) for ext in NON_CODE_EXTENSIONS)


def _extension(file_name: str) -> str:
    base = file_name.rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[-1].lower()


def get_language(file_name: str) -> str:
    """Human-readable language name for prompts; "Unknown" when unmapped."""
    return LANGUAGE_MAP.get(_extension(file_name), "Unknown")


def fence_tag(file_name: str) -> str:
    """Code-fence info string for a file; GitHub highlights by extension."""
    ext = _extension(file_name)
    return ext if ext in LANGUAGE_MAP else ""
