from rich.console import Console
from rich.table import Table


def get_rich_console() -> Console: return Console(stderr=True)


def status_table(statuses: dict[str, str]) -> Table:
    """Таблица 'сервис -> статус' для команды check."""
    table = Table(title="Connections")
    table.add_column("Service", style="cyan")
    table.add_column("Status")
    for service, status in statuses.items():
        style = "green" if status == "ok" else "yellow" if status.startswith("skipped") else "red"
        table.add_row(service, f"[{style}]{status}[/{style}]")
    return table
