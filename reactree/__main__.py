from reactree.cli import main

main()
