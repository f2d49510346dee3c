from social.graze.authstore.cli import main

if __name__ == "__main__":
    main()
