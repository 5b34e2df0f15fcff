from farmmarket import create_app

app = create_app()
