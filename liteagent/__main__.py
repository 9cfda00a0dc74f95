from liteagent.main import main

main()
