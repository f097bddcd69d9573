from chgrep.cli import main

main()
