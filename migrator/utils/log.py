from colorama import Fore, Style

BANNER = "-" * 73

LEVEL_COLORS = {
    "ok": Fore.GREEN,
    "warn": Fore.YELLOW,
    "error": Fore.RED,
    "info": "",
}

# ledger status -> level, for `migrate status` listings
STATUS_LEVELS = {
    "Confirmed": "ok",
    "Pending": "warn",
    "Failed": "error",
}


def _colored(color, msg):
    if not color:
        return msg
    return f"{color}{msg}{Style.RESET_ALL}"


def h1(msg):
    print(f"\n\n{Fore.CYAN}{BANNER}")
    print(_colored(Fore.CYAN, msg) + "\n")


def h2(msg):
    print("\n" + _colored(Fore.LIGHTBLUE_EX, f"▸ {msg}") + "\n")


def h3(msg):
    print("\t" + _colored(Fore.GREEN, msg))


def warn(msg):
    print(_colored(Fore.YELLOW, msg))


def error(msg):
    print(_colored(Fore.RED, msg))


def info(msg):
    print(msg)


def row(label, msg, level="info"):
    """One aligned `label  msg` line of a run report."""
    print("\t" + _colored(LEVEL_COLORS[level], f"{label:<9}{msg}"))


def status(state, msg):
    print("\t" + _colored(LEVEL_COLORS[STATUS_LEVELS.get(state, "info")], msg))
