from amqpcli.main import app

app()
