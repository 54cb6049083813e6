"""
WebPilot - Автономный AI-агент для управления браузером.

Entry point для запуска агента.
"""

import asyncio
import sys

from langchain_mcp_adapters.client import MultiServerMCPClient
from langchain_openai import ChatOpenAI
from rich.console import Console

from webpilot.agent.service import Agent
from webpilot.agent.views import AgentSettings
from webpilot.browser.context import BrowserContextConfig, McpBrowserContext
from webpilot.controller.service import Controller
from webpilot.ui.cli import print_step, run_cli
from webpilot.utils.config import load_config
from webpilot.utils.logger import set_global_level, setup_logger

console = Console()
logger = setup_logger(__name__)


async def main() -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    try:
        # Загрузка конфигурации
        console.print("[cyan]Загрузка конфигурации...[/cyan]")
        config = load_config()
        set_global_level(config.log_level)
        logger.info("Configuration loaded successfully")

        # Инициализация LLM
        console.print(f"[cyan]Подключение к LLM: {config.llm_model}...[/cyan]")
        llm = ChatOpenAI(
            api_key=config.llm_api_key,
            base_url=config.llm_base_url,
            model=config.llm_model,
            temperature=config.llm_temperature,
            streaming=False,
        )
        logger.info(f"LLM client created: {config.llm_model}")

        # Инициализация MCP Client
        console.print("[cyan]Запуск MCP сервера через stdio...[/cyan]")

        mcp_client = MultiServerMCPClient(
            {
                "browsermcp": {
                    "transport": "stdio",
                    "command": "npx",
                    "args": [
                        "-y",
                        "@playwright/mcp@latest",
                        "--cdp-endpoint",
                        config.browser_cdp_endpoint,
                        "--snapshot-mode",
                        "none",
                        "--image-responses",
                        "omit",
                    ],
                }
            }
        )

        # Найти browser_run_code, через него работает весь браузерный слой
        try:
            all_mcp_tools = await mcp_client.get_tools()
            browser_run_code_tool = next(
                (tool for tool in all_mcp_tools if tool.name == "browser_run_code"),
                None,
            )

            if browser_run_code_tool is None:
                console.print("[red]✗ browser_run_code не найден в MCP сервере[/red]")
                return 1

            logger.info(f"Available MCP tools: {[tool.name for tool in all_mcp_tools]}")
            console.print("[green]✓ Найден browser_run_code в MCP сервере[/green]")

        except Exception as e:
            logger.error(f"Failed to get tools from MCP: {e}", exc_info=True)
            console.print(f"[red]✗ Не удалось получить tools из MCP сервера: {e}[/red]")
            console.print(
                "\n[yellow]Убедитесь что npx доступен и @playwright/mcp установлен:[/yellow]"
            )
            console.print("[yellow]  npm install -g @playwright/mcp@latest[/yellow]\n")
            return 1

        browser_context = McpBrowserContext(
            browser_run_code_tool,
            BrowserContextConfig(
                allowed_domains=config.browser_allowed_domains,
                minimum_wait_page_load_time=config.browser_minimum_wait_page_load_time,
                wait_for_network_idle_page_load_time=config.browser_wait_for_network_idle_page_load_time,
                maximum_wait_page_load_time=config.browser_maximum_wait_page_load_time,
                wait_between_actions=config.browser_wait_between_actions,
            ),
        )
        controller = Controller()
        settings = AgentSettings(
            use_vision=config.agent_use_vision,
            max_failures=config.agent_max_failures,
            retry_delay=config.agent_retry_delay,
            max_input_tokens=config.agent_max_input_tokens,
            max_actions_per_step=config.agent_max_actions_per_step,
            tool_calling_method=config.agent_tool_calling_method,
            save_history_path=(
                str(config.agent_save_history_path)
                if config.agent_save_history_path
                else None
            ),
            save_conversation_path=(
                str(config.agent_save_conversation_path)
                if config.agent_save_conversation_path
                else None
            ),
        )
        console.print(
            f"[green]✓ Агент готов: {len(controller.registry.actions)} действий[/green]\n"
        )

        def agent_factory(task: str) -> Agent:
            return Agent(
                task=task,
                llm=llm,
                browser_context=browser_context,
                controller=controller,
                settings=settings,
                register_new_step_callback=print_step,
            )

        # Запуск CLI
        try:
            await run_cli(agent_factory, max_steps=config.agent_max_steps)
        except KeyboardInterrupt:
            console.print("\n[yellow]Прервано пользователем[/yellow]")

        return 0

    except FileNotFoundError as e:
        console.print(f"[red]Ошибка: Файл не найден: {e}[/red]")
        console.print("\n[yellow]Создайте файл .env на основе .env.example[/yellow]")
        return 1

    except ValueError as e:
        console.print(f"[red]Ошибка конфигурации: {e}[/red]")
        return 1

    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"[red]Неожиданная ошибка: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
