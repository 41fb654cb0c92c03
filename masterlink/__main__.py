from masterlink.cli import main

main()
