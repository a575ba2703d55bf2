from pathlib import Path

SNIFF_SIZE = 512


def is_likely_text_file(path: str | Path, sniff_size: int = SNIFF_SIZE) -> bool:
    """
    Guess whether an extensionless file is text.

    A NUL byte in the first ``sniff_size`` bytes means binary. Files that
    cannot be read are treated as binary too.
    """
    try:
        with open(path, "rb") as f:
            head = f.read(sniff_size)
    except OSError:
        return False
    return b"\x00" not in head
