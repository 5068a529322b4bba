from tickfolio.app import main

main()
