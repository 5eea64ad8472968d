import nonebot

nonebot.init(driver="~none")
nonebot.load_plugin("nonebot_plugin_q3check")
