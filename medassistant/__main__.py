from medassistant.main import run

run()
