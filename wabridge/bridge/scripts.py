"""JavaScript, который выполняется внутри страницы WhatsApp Web.

Функции принимают аргументы через PageSession.evaluate (JSON) и вызывают
host-функции, открытые через BridgeRelay.expose_host_function.
"""

WPP_READY_EXPRESSION = 'window.WPP?.isReady'
STORE_READY_EXPRESSION = 'window.Store != undefined'

WPP_DEFAULTS = """(markOnlineAvailable) => {
	try {
		WPP.chat.defaultSendMessageOptions.createChat = true;
		if (markOnlineAvailable) WPP.conn.setKeepAlive(markOnlineAvailable);
		WPP.conn.joinWebBeta(true);
		return true;
	} catch (e) {
		return false;
	}
}"""

WPP_LIMITS = """() => {
	if (!window.WPP?.conn) return;
	WPP.conn.setLimit('maxMediaSize', 16777216);
	WPP.conn.setLimit('maxFileSize', 104857600);
	WPP.conn.setLimit('maxShare', 100);
	WPP.conn.setLimit('statusVideoMaxDuration', 120);
	WPP.conn.setLimit('unlimitedPin', true);
}"""

LOADING_SCREEN_OBSERVER = """(progressSelector, messageSelector) => {
	const observer = new MutationObserver(() => {
		const progress = document.querySelector(progressSelector);
		const message = document.querySelector(messageSelector);
		const percent = progress ? progress.getAttribute('value') : null;
		const text = message ? message.textContent : null;
		if (percent !== null && text !== null) {
			window.loadingScreen(percent, text);
		}
	});
	observer.observe(document, { attributes: true, childList: true, characterData: true, subtree: true });
}"""
LOADING_PROGRESS_SELECTOR = 'progress.ZJWuG'
LOADING_MESSAGE_SELECTOR = 'div._3HbCE'

COMPARE_WWEB_VERSIONS = """() => {
	window.compareWwebVersions = (lOperand, operator, rOperand) => {
		const fail = (message) => {
			const error = new Error(message);
			error.name = 'CompareWwebVersionsError';
			throw error;
		};
		if (!['>', '>=', '<', '<=', '='].includes(operator)) fail('Invalid comparison operator is provided');
		if (typeof lOperand !== 'string' || typeof rOperand !== 'string') fail('A non-string WWeb version type is provided');

		lOperand = lOperand.replace(/-beta$/, '');
		rOperand = rOperand.replace(/-beta$/, '');
		while (lOperand.length !== rOperand.length) {
			if (lOperand.length > rOperand.length) rOperand = rOperand.concat('0');
			else lOperand = lOperand.concat('0');
		}
		const left = Number(lOperand.replace(/\\./g, ''));
		const right = Number(rOperand.replace(/\\./g, ''));
		return (
			operator === '>' ? left > right :
			operator === '>=' ? left >= right :
			operator === '<' ? left < right :
			operator === '<=' ? left <= right :
			left === right
		);
	};
}"""

UNREGISTER_SERVICE_WORKERS = """async () => {
	if (!navigator.serviceWorker) return;
	const registrations = await navigator.serviceWorker.getRegistrations();
	for (const registration of registrations) {
		registration.unregister();
	}
}"""

CLIENT_INFO = """() => (window.Store ? { ...window.Store.Conn.serialize(), wid: window.Store.User.getMeUser() } : null)"""

# Подписки на коллекции Store. Каждая подписка вызывает host-функцию с тем же именем,
# что и событие страницы в BridgeRelay.subscribe_page_event.
STORE_OBSERVER = """() => {
	if (!window.Store) return false;
	const toMessage = (msg) => {
		if (window.WWebJS?.getMessageModel) return window.WWebJS.getMessageModel(msg);
		return msg?.serialize ? msg.serialize() : msg;
	};
	const toChat = async (chat) => {
		if (window.WWebJS?.getChatModel) return await window.WWebJS.getChatModel(chat);
		return chat?.serialize ? chat.serialize() : chat;
	};
	const Store = window.Store;

	Store.Msg.on('change', (msg) => { window.onChangeMessageEvent(toMessage(msg)); });
	Store.Msg.on('change:type', (msg) => { window.onChangeMessageTypeEvent(toMessage(msg)); });
	Store.Msg.on('change:ack', (msg, ack) => { window.onMessageAckEvent(toMessage(msg), ack); });
	Store.Msg.on('change:isUnsentMedia', (msg, unsent) => {
		if (msg.id.fromMe && !unsent) window.onMessageMediaUploadedEvent(toMessage(msg));
	});
	Store.Msg.on('remove', (msg) => { if (msg.isNewMsg) window.onRemoveMessageEvent(toMessage(msg)); });
	Store.Msg.on('change:body', (msg, newBody, prevBody) => {
		window.onEditMessageEvent(toMessage(msg), newBody, prevBody);
	});
	Store.AppState.on('change:state', (_appState, state) => { window.onAppStateChangedEvent(state); });
	Store.Conn.on('change:battery', (state) => {
		window.onBatteryStateChangedEvent({ battery: state.battery, plugged: state.plugged });
	});
	Store.Call.on('add', (call) => { window.onIncomingCall(call?.serialize ? call.serialize() : call); });
	Store.Chat.on('remove', async (chat) => { window.onRemoveChatEvent(await toChat(chat)); });
	Store.Chat.on('change:archive', async (chat, currState, prevState) => {
		window.onArchiveChatEvent(await toChat(chat), currState, prevState);
	});
	Store.Msg.on('add', (msg) => {
		if (!msg.isNewMsg) return;
		if (msg.type === 'ciphertext') {
			// уведомление откладывается до расшифровки, один раз на сообщение
			msg.once('change:type', (resolved) => window.onAddMessageEvent(toMessage(resolved)));
		} else {
			window.onAddMessageEvent(toMessage(msg));
		}
	});
	Store.Chat.on('change:unreadCount', (chat) => {
		window.onChatUnreadCountEvent({ id: chat.id?._serialized ?? chat.id, unreadCount: chat.unreadCount });
	});

	const reactionsModule = Store.createOrUpdateReactionsModule;
	if (reactionsModule) {
		const original = reactionsModule.createOrUpdateReactions;
		reactionsModule.createOrUpdateReactions = ((...args) => {
			window.onReaction(args[0].map((reaction) => ({ ...reaction })));
			return original(...args);
		}).bind(reactionsModule);
	}
	return true;
}"""
