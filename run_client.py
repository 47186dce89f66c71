"""
Скрипт для запуска клиента WhatsApp Web: печатает QR / код сопряжения и входящие сообщения
"""
import asyncio
import sys

from dotenv import load_dotenv

from wabridge import Client, ClientOptions, LinkingMethod, LocalAuth, PhoneLinking
from wabridge.session import BrowserProfile

load_dotenv()


async def run_client(client_id: str | None, phone_number: str | None, headless: bool, reply_ping: bool, store_scripts: list[str]):
    """Запустить клиента и ждать сообщений до Ctrl+C"""
    options = ClientOptions(
        browser_profile=BrowserProfile.from_env(headless=headless),
        auth_strategy=LocalAuth(client_id=client_id),
        linking_method=LinkingMethod(phone=PhoneLinking(number=phone_number)) if phone_number else None,
        store_scripts=store_scripts,
    )
    client = Client(options)
    disconnected = asyncio.Event()

    @client.on('qr')
    def print_qr(event):
        print(f"\nQR-токен (отсканируйте в WhatsApp > Связанные устройства):\n{event.qr}\n")

    @client.on('code')
    def print_code(event):
        print(f"\nКод сопряжения: {event.code}\n")

    @client.on('loading_screen')
    def print_loading(event):
        print(f"Загрузка {event.percent}%: {event.message}")

    @client.on('ready')
    def print_ready(event):
        print("✅ Клиент готов")

    @client.on('message')
    async def print_message(event):
        message = event.message
        print(f"📩 {message.from_}: {message.body}")
        if reply_ping and message.body.strip().lower() == '!ping':
            await client.send_message(message.chat_id, 'pong')

    @client.on('disconnected')
    def on_disconnected(event):
        print(f"⚠️  Отключено: {event.reason}")
        disconnected.set()

    try:
        await client.initialize()
        await disconnected.wait()
    except KeyboardInterrupt:
        print("\n\n⚠️  Прервано пользователем")
    finally:
        print("\nЗакрываем браузер...")
        await client.destroy()


def main():
    """Главная функция"""
    client_id = None
    phone_number = None
    if '--client-id' in sys.argv:
        idx = sys.argv.index('--client-id')
        client_id = sys.argv[idx + 1] if idx + 1 < len(sys.argv) else None
    if '--phone' in sys.argv:
        idx = sys.argv.index('--phone')
        phone_number = sys.argv[idx + 1] if idx + 1 < len(sys.argv) else None
    headless = '--headless' in sys.argv
    reply_ping = '--ping' in sys.argv
    # --store-script можно указать несколько раз
    store_scripts = [sys.argv[idx + 1] for idx, arg in enumerate(sys.argv[:-1]) if arg == '--store-script']

    try:
        asyncio.run(run_client(client_id, phone_number, headless, reply_ping, store_scripts))
    except KeyboardInterrupt:
        pass


if __name__ == '__main__':
    main()
