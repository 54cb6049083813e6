"""CLI interface для WebPilot Agent."""

from typing import Callable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

from webpilot.agent.service import Agent
from webpilot.agent.views import AgentHistoryList, AgentOutput
from webpilot.browser.views import BrowserState
from webpilot.utils.logger import setup_logger

logger = setup_logger(__name__)
console = Console()


def print_step(browser_state: Optional[BrowserState], model_output: AgentOutput, step: int) -> None:
    """Показать решение модели на шаге одной строкой."""
    actions = ", ".join(action.name for action in model_output.action)
    url = browser_state.url if browser_state else "-"
    console.print(
        f"[dim][Шаг {step}] {url} → {actions} | {model_output.current_state.next_goal}[/dim]"
    )


def render_result(history: AgentHistoryList) -> None:
    """
    Показать итог выполнения задачи.

    Args:
        history: История завершённого запуска
    """
    final_result = history.final_result()

    if history.is_done():
        if history.is_successful():
            border_style, title = "green", "Результат"
        else:
            border_style, title = "yellow", "Задача не выполнена полностью"
        console.print(
            Panel(
                f"[{border_style}]{final_result or 'Агент не вернул содержательный ответ'}[/{border_style}]",
                title=title,
                border_style=border_style,
            )
        )
    else:
        console.print("[yellow]Агент не завершил выполнение[/yellow]")

    errors = [e for e in history.errors() if e]
    summary = (
        f"Шагов: {history.number_of_steps()}\n"
        f"Входных токенов: {history.total_input_tokens()}\n"
        f"Время: {history.total_duration_seconds():.1f} с"
    )
    if errors:
        summary += f"\nОшибок: {len(errors)}\nПоследняя ошибка: {errors[-1].splitlines()[-1]}"
    console.print(Panel(summary, title="Статистика", border_style="blue"))


async def run_cli(agent_factory: Callable[[str], Agent], max_steps: int = 100) -> None:
    """
    Запустить интерактивный CLI для взаимодействия с агентом.

    Каждая задача выполняется новым агентом на том же браузере.

    Args:
        agent_factory: Создаёт агента для задачи
        max_steps: Лимит шагов на одну задачу

    Example:
        >>> await run_cli(lambda task: Agent(task, llm, browser_context))
    """
    console.print(
        Panel.fit(
            "[bold cyan]WebPilot Agent[/bold cyan]\n"
            "Автономный AI-агент для управления браузером\n\n"
            "Команды:\n"
            "  [yellow]exit/quit[/yellow] - Выход\n"
            "  [yellow]help[/yellow] - Помощь",
            title="Добро пожаловать!",
        )
    )

    while True:
        try:
            # Получаем задачу от пользователя
            query = Prompt.ask("\n[bold green]Задача[/bold green]")

            if not query.strip():
                continue

            if query.lower() in ["exit", "quit", "q"]:
                console.print("[yellow]До свидания![/yellow]")
                break

            if query.lower() == "help":
                show_help()
                continue

            # Выполняем задачу
            console.print("[cyan]Агент работает...[/cyan]")
            logger.info(f"User query: {query}")

            try:
                agent = agent_factory(query)
                history = await agent.run(max_steps=max_steps)
                render_result(history)
            except Exception as e:
                logger.error(f"Error during agent execution: {e}", exc_info=True)
                console.print(
                    Panel(
                        f"[red]Ошибка: {str(e)}[/red]",
                        title="Ошибка выполнения",
                        border_style="red",
                    )
                )

        except KeyboardInterrupt:
            console.print(
                "\n[yellow]Прервано пользователем. Используйте 'exit' для выхода.[/yellow]"
            )
            continue
        except EOFError:
            console.print("\n[yellow]До свидания![/yellow]")
            break


def show_help() -> None:
    """Показать справку по использованию."""
    help_text = """
[bold]Примеры задач:[/bold]

[cyan]1. Простая навигация:[/cyan]
   "Открой yandex.ru и найди погоду в Москве"

[cyan]2. Поиск информации:[/cyan]
   "Найди в Google текущий курс евро и верни число"

[cyan]3. Поиск вакансий:[/cyan]
   "Найди 3 вакансии Python разработчика на hh.ru"

[bold]Советы:[/bold]
- Формулируй задачи чётко и конкретно
- Агент видит только интерактивные элементы страницы и их номера
- После 3 неудачных шагов подряд задача прерывается

[bold]Требования:[/bold]
- Chrome запущен с --remote-debugging-port=9222
- Для задач с авторизацией: войди в аккаунты заранее
    """

    console.print(Panel(help_text, title="Справка", border_style="blue"))
