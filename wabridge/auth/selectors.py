"""CSS-селекторы экранов WhatsApp Web, по которым определяется состояние входа."""

# Главный экран: варианты на случай смены вёрстки WhatsApp Web, выбираются ClientOptions.selector
MAIN_SCREEN_SELECTORS: dict[int, str] = {
	1: "div[role='textbox']",
	2: '[data-icon="chat"],[data-icon="intro-md-beta-logo-dark"],[data-icon="intro-md-beta-logo-light"]',
	3: "[data-icon='chat']",
	4: ', '.join(
		[
			'[data-icon*=community]',
			'[data-icon*=status]',
			'[data-icon*=chat]',
			'[data-icon*=back]',
			'[data-icon*=search]',
			'[data-icon*=filter]',
			'[data-icon*=lock-small]',
		]
	),
	5: (
		'[data-testid="intro-md-beta-logo-dark"], [data-testid="intro-md-beta-logo-light"], '
		'[data-asset-intro-image-light="true"], [data-asset-intro-image-dark="true"], '
		'[data-icon="intro-md-beta-logo-dark"], [data-icon="intro-md-beta-logo-light"]'
	),
	6: '#side > div._3gYev > div > div._1EUay > div._2vDPL',
}
DEFAULT_MAIN_SCREEN_SELECTOR = "[data-icon='search']"

# Экран сопряжения: canvas с QR внутри контейнера с data-ref
PAIRING_SCREEN_SELECTOR = 'div[data-ref] canvas'

QR_CONTAINER = 'div[data-ref]'
QR_RETRY_BUTTON = 'div[data-ref] > span > button'

LINK_WITH_PHONE_BUTTON = 'div._3rDmx div._2rQUO span._3iLTh'
PHONE_NUMBER_INPUT = 'input.selectable-text'
NEXT_BUTTON = 'div._1M6AF._3QJHf'
CODE_CONTAINER = '[aria-details="link-device-phone-number-code-screen-instructions"]'
GENERATE_NEW_CODE_BUTTON = '//*[@id="app"]/div/div/div[3]/div[1]/div/div/div[1]/div[2]/a'
LINK_WITH_PHONE_VIEW = 'div._1x9Rv._3qC8O'


def main_screen_selector(variant: int | None) -> str:
	"""Селектор главного экрана для варианта 1-6, иначе селектор по умолчанию."""
	if variant is None:
		return DEFAULT_MAIN_SCREEN_SELECTOR
	return MAIN_SCREEN_SELECTORS.get(variant, DEFAULT_MAIN_SCREEN_SELECTOR)
